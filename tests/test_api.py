from datetime import timedelta

import pytest

from bettingpool.models import AdminAction, Bet, BettingRound


@pytest.fixture
def admin(make_user):
    return make_user(is_admin=True)


def coupon(fixtures, prediction="1"):
    return [{"fixture_id": f.id, "prediction": prediction} for f in fixtures]


class TestAuth:
    def test_login_and_me(self, client, make_user, login):
        user = make_user(email="fan@example.com")

        response = login(user)
        assert response.status_code == 200
        assert response.get_json()["user"]["email"] == "fan@example.com"

        me = client.get("/auth/me")
        assert me.status_code == 200
        assert me.get_json()["user"]["id"] == user.id

    def test_wrong_password(self, make_user, login):
        response = login(make_user(), password="nope")

        assert response.status_code == 401
        assert response.get_json()["error"] == "Invalid email or password"

    def test_missing_credentials(self, client):
        response = client.post("/auth/login", json={})
        assert response.status_code == 400

    def test_logout(self, client, make_user, login):
        login(make_user())

        assert client.post("/auth/logout").status_code == 200
        assert client.get("/auth/me").status_code == 401

    def test_csrf_token(self, client):
        assert "csrf_token" in client.get("/auth/csrf-token").get_json()


class TestCsrf:
    @pytest.fixture
    def csrf_on(self, app):
        app.config["WTF_CSRF_ENABLED"] = True
        yield
        app.config["WTF_CSRF_ENABLED"] = False

    def test_anonymous_bet_is_unauthorized(self, client, make_round, csrf_on):
        _, fixtures = make_round()

        response = client.post("/api/bets", json=coupon(fixtures))

        assert response.status_code == 401
        assert response.get_json() == {"error": "Login required"}

    def login_with_token(self, client, user):
        token = client.get("/auth/csrf-token").get_json()["csrf_token"]
        response = client.post(
            "/auth/login",
            json={"email": user.email, "password": "secret123"},
            headers={"X-CSRFToken": token},
        )
        assert response.status_code == 200
        return token

    def test_logged_in_without_token(self, client, make_user, make_round, csrf_on):
        _, fixtures = make_round()
        self.login_with_token(client, make_user())

        response = client.post("/api/bets", json=coupon(fixtures))

        assert response.status_code == 400
        assert response.get_json()["error"] == "Security token missing or invalid"
        assert Bet.query.count() == 0

    def test_logged_in_with_token(self, client, make_user, make_round, csrf_on):
        _, fixtures = make_round(fixture_count=2)
        token = self.login_with_token(client, make_user())

        response = client.post(
            "/api/bets", json=coupon(fixtures), headers={"X-CSRFToken": token}
        )

        assert response.status_code == 200
        assert Bet.query.count() == 2

    def test_login_without_token_names_the_token(self, client, make_user, csrf_on):
        user = make_user()

        response = client.post(
            "/auth/login", json={"email": user.email, "password": "secret123"}
        )

        assert response.status_code == 400
        assert "details" in response.get_json()


class TestBets:
    def test_requires_login(self, client, make_round):
        _, fixtures = make_round()

        response = client.post("/api/bets", json=coupon(fixtures))

        assert response.status_code == 401

    def test_submit_coupon(self, client, make_user, make_round, login):
        user = make_user()
        betting_round, fixtures = make_round(fixture_count=3)
        login(user)

        response = client.post(
            "/api/bets",
            json={"round_id": betting_round.id, "predictions": coupon(fixtures, "X")},
        )

        assert response.status_code == 200
        assert response.get_json() == {
            "message": "Bets saved",
            "round_id": betting_round.id,
            "bets_saved": 3,
        }
        assert Bet.query.filter_by(user_id=user.id, prediction="X").count() == 3

    def test_after_deadline(self, client, make_user, make_round, login, now):
        _, fixtures = make_round(kickoff=now - timedelta(minutes=1))
        login(make_user())

        response = client.post("/api/bets", json=coupon(fixtures))

        assert response.status_code == 403
        assert Bet.query.count() == 0

    def test_unknown_fixture(self, client, make_user, login):
        login(make_user())

        response = client.post(
            "/api/bets", json=[{"fixture_id": 99999, "prediction": "1"}]
        )

        assert response.status_code == 404

    def test_invalid_prediction(self, client, make_user, make_round, login):
        _, fixtures = make_round()
        login(make_user())

        response = client.post("/api/bets", json=coupon(fixtures, "3"))

        assert response.status_code == 400
        assert "error" in response.get_json()

    def test_non_json_body(self, client, make_user, login):
        login(make_user())

        response = client.post("/api/bets", data="not json", content_type="text/plain")

        assert response.status_code == 400

    def test_list_own_bets(self, client, make_user, make_round, make_bet, login):
        user, other = make_user(), make_user()
        betting_round, fixtures = make_round()
        make_bet(user, fixtures[0], "2")
        make_bet(other, fixtures[0], "1")
        login(user)

        response = client.get(f"/api/bets?round_id={betting_round.id}")

        bets = response.get_json()["bets"]
        assert [(b["fixture_id"], b["prediction"]) for b in bets] == [(fixtures[0].id, "2")]

    def test_list_requires_round_id(self, client, make_user, login):
        login(make_user())
        assert client.get("/api/bets").status_code == 400


class TestRounds:
    def test_open_round(self, client, make_round):
        betting_round, fixtures = make_round(fixture_count=2)

        data = client.get(f"/api/rounds/{betting_round.id}").get_json()

        assert data["id"] == betting_round.id
        assert data["is_locked"] is False
        assert data["seconds_until_lock"] > 0
        assert [f["id"] for f in data["fixtures"]] == [f.id for f in fixtures]

    def test_locked_round(self, client, make_round, now):
        betting_round, _ = make_round(kickoff=now - timedelta(hours=1))

        data = client.get(f"/api/rounds/{betting_round.id}").get_json()

        assert data["is_locked"] is True
        assert data["seconds_until_lock"] == 0

    def test_unknown_round(self, client):
        response = client.get("/api/rounds/4040")

        assert response.status_code == 404
        assert response.get_json()["details"] == {"round_id": 4040}


class TestStandings:
    def test_standings(self, client, competition, make_user, scored_round):
        leader, trailer = make_user(), make_user()
        scored_round({leader: 4, trailer: 2})

        data = client.get(f"/api/standings?competition_id={competition.id}").get_json()

        assert data["competition_id"] == competition.id
        assert [(s["user_id"], s["rank"], s["total_points"]) for s in data["standings"]] == [
            (leader.id, 1, 4),
            (trailer.id, 2, 2),
        ]

    def test_defaults_to_current_competition(self, client, competition):
        data = client.get("/api/standings").get_json()

        assert data["competition_id"] == competition.id
        assert data["standings"] == []

    def test_standings_are_cached_until_invalidated(
        self, client, competition, make_user, scored_round
    ):
        url = f"/api/standings?competition_id={competition.id}"
        assert client.get(url).get_json()["standings"] == []

        scored_round({make_user(): 3})

        assert client.get(url).get_json()["standings"] == []

    def test_hall_of_fame_empty(self, client):
        assert client.get("/api/hall-of-fame").get_json() == {"hall_of_fame": []}


class TestAdmin:
    def test_requires_admin(self, client, make_user, make_round, login):
        betting_round, _ = make_round()
        login(make_user())

        response = client.post(f"/api/admin/rounds/{betting_round.id}/score", json={})

        assert response.status_code == 403

    def test_requires_login(self, client):
        assert client.post("/api/admin/rounds/1/score", json={}).status_code == 401

    def test_score_round(
        self, client, admin, competition, make_user, make_round, make_bet, login, now
    ):
        player = make_user()
        betting_round, fixtures = make_round(kickoff=now - timedelta(hours=3))
        make_bet(player, fixtures[0], "1")
        make_bet(player, fixtures[1], "2")
        standings_url = f"/api/standings?competition_id={competition.id}"
        client.get(standings_url)
        login(admin)

        response = client.post(
            f"/api/admin/rounds/{betting_round.id}/score",
            json={"results": {str(fixtures[0].id): "1", str(fixtures[1].id): [2, 2]}},
        )

        assert response.status_code == 200
        assert response.get_json()["status"] == "scored"
        assert response.get_json()["bets_scored"] == 2
        assert BettingRound.query.get(betting_round.id).status == "scored"
        assert AdminAction.query.filter_by(action_type=AdminAction.SCORE_ROUND).count() == 1

        standings = client.get(standings_url).get_json()["standings"]
        assert standings[0]["total_points"] == 1

    def test_score_round_with_bad_results(self, client, admin, make_round, login, now):
        betting_round, _ = make_round(kickoff=now - timedelta(hours=3))
        login(admin)

        response = client.post(
            f"/api/admin/rounds/{betting_round.id}/score", json={"results": {"abc": "1"}}
        )

        assert response.status_code == 400

    def test_retroactive_preview_writes_nothing(
        self, client, admin, competition, make_user, scored_round, login
    ):
        scored_round({make_user(): 3, make_user(): 1})
        late = make_user()
        login(admin)

        response = client.get(
            f"/api/admin/retroactive-points?user_id={late.id}&competition_id={competition.id}"
        )

        data = response.get_json()
        assert data["dry_run"] is True
        assert data["total_points_awarded"] == 1
        assert Bet.query.filter_by(user_id=late.id).count() == 0

    def test_retroactive_apply(
        self, client, admin, competition, make_user, scored_round, login
    ):
        scored_round({make_user(): 3, make_user(): 1})
        late = make_user()
        login(admin)

        response = client.post(
            "/api/admin/retroactive-points",
            json={"user_id": late.id, "competition_id": competition.id},
        )

        data = response.get_json()
        assert data["success"] is True
        assert data["rounds_processed"] == 1
        assert Bet.query.filter_by(user_id=late.id).count() == 5
        action = AdminAction.query.filter_by(
            action_type=AdminAction.APPLY_RETROACTIVE_POINTS
        ).one()
        assert action.target_user_id == late.id

    def test_retroactive_bulk(
        self, client, admin, competition, make_user, scored_round, login, now
    ):
        scored_round({make_user(created_at=now - timedelta(days=10)): 2})
        late = make_user(created_at=now - timedelta(hours=1))
        admin.created_at = now - timedelta(days=10)
        login(admin)

        response = client.post(
            "/api/admin/retroactive-points",
            json={
                "after_date": (now - timedelta(days=1)).isoformat(),
                "competition_id": competition.id,
            },
        )

        data = response.get_json()
        assert data["total_users_processed"] == 1
        assert data["user_results"][0]["user_id"] == late.id

    def test_retroactive_requires_target(self, client, admin, competition, login):
        login(admin)

        response = client.post(
            "/api/admin/retroactive-points", json={"competition_id": competition.id}
        )

        assert response.status_code == 400

    def test_season_winners(
        self, client, admin, season, make_user, scored_round, login
    ):
        champion = make_user()
        scored_round({champion: 4, make_user(): 1})
        login(admin)

        response = client.post(f"/api/admin/seasons/{season.id}/winners")

        winners = response.get_json()["winners"]
        assert [w["user_id"] for w in winners] == [champion.id]
        hall = client.get("/api/hall-of-fame").get_json()["hall_of_fame"]
        assert hall[0]["user_id"] == champion.id

    def test_season_winners_unknown_season(self, client, admin, login):
        login(admin)
        assert client.post("/api/admin/seasons/777/winners").status_code == 404
