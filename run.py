from prophecy import create_app, db
from prophecy.models import Fixture, GameweekScore, Prediction, Prophecy, User

app = create_app()


@app.shell_context_processor
def make_shell_context():
    return {
        "db": db,
        "User": User,
        "Fixture": Fixture,
        "Prediction": Prediction,
        "GameweekScore": GameweekScore,
        "Prophecy": Prophecy,
    }


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=app.config.get("DEBUG", False))
