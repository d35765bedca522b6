from bettingpool import create_app, db
from bettingpool.models import Bet, BettingRound, Competition, Fixture, Season, User

app = create_app()


@app.shell_context_processor
def make_shell_context():
    return {
        "db": db,
        "User": User,
        "Competition": Competition,
        "Season": Season,
        "BettingRound": BettingRound,
        "Fixture": Fixture,
        "Bet": Bet,
    }


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
