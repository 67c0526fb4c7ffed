from fleetledger import create_app

app = create_app()
