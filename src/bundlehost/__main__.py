from bundlehost.apps.cli.app import app

app(prog_name="bundlehost")
