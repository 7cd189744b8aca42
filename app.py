"""Application entry point for the Just Dogs web API."""

from justdogs.webapp import create_app

app = create_app()


if __name__ == "__main__":
    app.run(debug=True)
