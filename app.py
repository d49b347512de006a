from stockhub import create_app

app = create_app()

if __name__ == "__main__":
    with app.app_context():
        app.logger.info("Stock engine ready; use `flask --app app stock --help`.")
