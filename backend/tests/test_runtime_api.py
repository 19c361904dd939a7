"""
API tests for match runtime: results, forfeits, disputes, withdrawals and
the coin toss on a built four-team single elimination stage.
"""

from fastapi.testclient import TestClient


def _setup_bracket(client: TestClient, teams: int = 4, fmt: str = "single_elimination") -> int:
    response = client.post("/api/tournaments", json={"name": "Runtime Open"})
    tid = response.json()["id"]
    for i in range(1, teams + 1):
        client.post(f"/api/tournaments/{tid}/teams", json={"name": f"Team {i}", "seed": i})
    client.put(f"/api/tournaments/{tid}/stages", json={"stages": [{"format": fmt}]})
    build = client.post(f"/api/tournaments/{tid}/stages/1/build")
    assert build.status_code == 200, build.text
    return tid


def _matches(client: TestClient, tid: int) -> dict:
    return {m["match_code"]: m for m in client.get(f"/api/tournaments/{tid}/stages/1/matches").json()}


def _url(tid: int, code: str, action: str) -> str:
    return f"/api/tournaments/{tid}/stages/1/matches/{code}/{action}"


# ============================================================================
# Results
# ============================================================================


class TestResults:
    def test_winner_fills_final_slot(self, client: TestClient):
        tid = _setup_bracket(client)
        semi = _matches(client, tid)["WB-R1-M1"]

        response = client.post(_url(tid, "WB-R1-M1", "result"), json={"score_a": 0, "score_b": 1})
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["match"]["status"] == "completed"
        assert body["match"]["winner_team_id"] == semi["team_b_id"]
        assert "WB-R2-M1" in body["touched"]

        final = _matches(client, tid)["WB-R2-M1"]
        assert semi["team_b_id"] in (final["team_a_id"], final["team_b_id"])

    def test_rejected_results(self, client: TestClient):
        tid = _setup_bracket(client)
        # Tied score
        assert client.post(_url(tid, "WB-R1-M1", "result"), json={"score_a": 1, "score_b": 1}).status_code == 422
        # Final still waiting on both semis
        assert client.post(_url(tid, "WB-R2-M1", "result"), json={"score_a": 1, "score_b": 0}).status_code == 409
        # Unknown match
        assert client.post(_url(tid, "WB-R9-M1", "result"), json={"score_a": 1, "score_b": 0}).status_code == 404

        client.post(_url(tid, "WB-R1-M1", "result"), json={"score_a": 1, "score_b": 0})
        again = client.post(_url(tid, "WB-R1-M1", "result"), json={"score_a": 0, "score_b": 1})
        assert again.status_code == 409

    def test_start_then_record(self, client: TestClient):
        tid = _setup_bracket(client)
        started = client.post(_url(tid, "WB-R1-M2", "start"))
        assert started.status_code == 200
        assert started.json()["match"]["status"] == "ongoing"
        assert client.post(_url(tid, "WB-R1-M2", "start")).status_code == 409
        assert client.post(_url(tid, "WB-R1-M2", "result"), json={"score_a": 1, "score_b": 0}).status_code == 200

    def test_batch_reports_each_entry(self, client: TestClient):
        tid = _setup_bracket(client)
        response = client.post(f"/api/tournaments/{tid}/stages/1/results", json={"results": [
            {"match_code": "WB-R1-M1", "score_a": 1, "score_b": 0},
            {"match_code": "WB-R1-M2", "score_a": 2, "score_b": 2},
            {"match_code": "WB-R7-M7", "score_a": 1, "score_b": 0},
            {"match_code": "WB-R1-M2", "score_a": 0, "score_b": 1},
        ]})
        assert response.status_code == 200
        assert [(o["match_code"], o["ok"]) for o in response.json()] == [
            ("WB-R1-M1", True),
            ("WB-R1-M2", False),
            ("WB-R7-M7", False),
            ("WB-R1-M2", True),
        ]
        final = _matches(client, tid)["WB-R2-M1"]
        assert final["team_a_id"] and final["team_b_id"]

    def test_stage_completes_with_final(self, client: TestClient):
        tid = _setup_bracket(client)
        client.post(_url(tid, "WB-R1-M1", "result"), json={"score_a": 1, "score_b": 0})
        client.post(_url(tid, "WB-R1-M2", "result"), json={"score_a": 1, "score_b": 0})
        final = client.post(_url(tid, "WB-R2-M1", "result"), json={"score_a": 1, "score_b": 0})
        assert final.json()["stage_complete"] is True
        assert client.get(f"/api/tournaments/{tid}/stages").json()[0]["status"] == "completed"


# ============================================================================
# Forfeits & disputes
# ============================================================================


class TestForfeitsAndDisputes:
    def test_forfeit_advances_winner(self, client: TestClient):
        tid = _setup_bracket(client)
        semi = _matches(client, tid)["WB-R1-M2"]
        response = client.post(_url(tid, "WB-R1-M2", "forfeit"), json={"winner_team_id": semi["team_b_id"]})
        assert response.status_code == 200, response.text
        match = response.json()["match"]
        assert match["status"] == "forfeited"
        assert match["is_forfeit"] is True
        assert match["winner_team_id"] == semi["team_b_id"]

    def test_forfeit_to_outsider_rejected(self, client: TestClient):
        tid = _setup_bracket(client)
        semi = _matches(client, tid)["WB-R1-M1"]
        outsider = _matches(client, tid)["WB-R1-M2"]["team_a_id"]
        assert semi["team_a_id"] != outsider
        response = client.post(_url(tid, "WB-R1-M1", "forfeit"), json={"winner_team_id": outsider})
        assert response.status_code == 409

    def test_dispute_and_overturn(self, client: TestClient):
        tid = _setup_bracket(client)
        semi = _matches(client, tid)["WB-R1-M1"]
        client.post(_url(tid, "WB-R1-M1", "result"), json={"score_a": 1, "score_b": 0})

        disputed = client.post(_url(tid, "WB-R1-M1", "dispute"), json={"reason": "Wrong score reported"})
        assert disputed.status_code == 200
        assert disputed.json()["match"]["status"] == "disputed"
        assert disputed.json()["match"]["dispute_reason"] == "Wrong score reported"

        resolved = client.post(_url(tid, "WB-R1-M1", "resolve"), json={
            "notes": "Referee sheet shows side B won",
            "score_a": 0,
            "score_b": 1,
            "resolved_by": "head ref",
        })
        assert resolved.status_code == 200, resolved.text
        assert resolved.json()["match"]["winner_team_id"] == semi["team_b_id"]

        final = _matches(client, tid)["WB-R2-M1"]
        assert semi["team_b_id"] in (final["team_a_id"], final["team_b_id"])
        assert semi["team_a_id"] not in (final["team_a_id"], final["team_b_id"])

        corrections = client.get(_url(tid, "WB-R1-M1", "corrections")).json()
        assert len(corrections) == 1
        assert corrections[0]["previous_winner_id"] == semi["team_a_id"]
        assert corrections[0]["new_winner_id"] == semi["team_b_id"]
        assert (corrections[0]["new_score_a"], corrections[0]["new_score_b"]) == (0, 1)
        assert corrections[0]["resolved_by"] == "head ref"

    def test_dispute_needs_completed_match(self, client: TestClient):
        tid = _setup_bracket(client)
        assert client.post(_url(tid, "WB-R1-M1", "dispute"), json={"reason": "x"}).status_code == 409
        assert client.post(_url(tid, "WB-R1-M1", "resolve"), json={"notes": "x"}).status_code == 409

    def test_resolve_needs_both_scores(self, client: TestClient):
        tid = _setup_bracket(client)
        client.post(_url(tid, "WB-R1-M1", "result"), json={"score_a": 1, "score_b": 0})
        client.post(_url(tid, "WB-R1-M1", "dispute"), json={"reason": "x"})
        response = client.post(_url(tid, "WB-R1-M1", "resolve"), json={"notes": "x", "score_a": 0})
        assert response.status_code == 422


# ============================================================================
# Withdrawal & coin toss
# ============================================================================


class TestWithdrawal:
    def test_withdraw_forfeits_open_match(self, client: TestClient):
        tid = _setup_bracket(client)
        semi = _matches(client, tid)["WB-R1-M1"]
        leaving = semi["team_a_id"]

        response = client.post(f"/api/tournaments/{tid}/teams/{leaving}/withdraw")
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["team"]["status"] == "withdrawn"
        assert body["team"]["withdrawn_at"] is not None
        assert len(body["stages"]) == 1
        transition = body["stages"][0]["transition"]
        assert "WB-R1-M1" in transition["forfeits"]
        assert transition["eliminated"].count(leaving) == 1

        semi = _matches(client, tid)["WB-R1-M1"]
        assert semi["status"] == "forfeited"
        assert semi["winner_team_id"] == semi["team_b_id"]

        again = client.post(f"/api/tournaments/{tid}/teams/{leaving}/withdraw")
        assert again.status_code == 409

    def test_withdraw_before_build_touches_no_stage(self, client: TestClient):
        tid = client.post("/api/tournaments", json={"name": "Early"}).json()["id"]
        team = client.post(f"/api/tournaments/{tid}/teams", json={"name": "Solo"}).json()
        response = client.post(f"/api/tournaments/{tid}/teams/{team['id']}/withdraw")
        assert response.status_code == 200
        assert response.json()["stages"] == []
        assert client.post(f"/api/tournaments/{tid}/teams/999/withdraw").status_code == 404


class TestCoinToss:
    def test_toss_between_known_teams(self, client: TestClient):
        tid = _setup_bracket(client)
        semi = _matches(client, tid)["WB-R1-M1"]
        response = client.post(_url(tid, "WB-R1-M1", "coin-toss"))
        assert response.status_code == 200
        body = response.json()
        assert {body["winner_team_id"], body["loser_team_id"]} == {semi["team_a_id"], semi["team_b_id"]}
        assert body["seed"]

    def test_toss_needs_both_teams(self, client: TestClient):
        tid = _setup_bracket(client)
        assert client.post(_url(tid, "WB-R2-M1", "coin-toss")).status_code == 409
