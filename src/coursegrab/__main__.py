from coursegrab.cli import app

app()
