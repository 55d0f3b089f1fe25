from oasisnotes import create_app

app = create_app()
