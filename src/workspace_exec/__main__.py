from workspace_exec.cli.main import app

app()
