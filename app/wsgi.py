from app.modulith import create_app

app = create_app()
