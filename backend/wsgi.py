from commerce import create_app

app = create_app()
