from zui.cli import app

app()
