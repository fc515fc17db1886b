from app.listopia import create_app

app = create_app()
