from tasktracker.cli import app

app(prog_name="tasktracker")
