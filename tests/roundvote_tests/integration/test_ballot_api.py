"""
Tests for the ballot API Blueprint.
"""

import threading

import pytest
from flask import Flask

from roundvote.core.api_blueprints import register_blueprints
from roundvote.core.ballot_exceptions import BallotStorageError
from roundvote.core.ballot_storage import BallotStore
from roundvote.core.contracts.ballot import BallotFactory

CHAIR = "0x" + "c" * 40
OWNER = "0x" + "0" * 39 + "1"
ALICE = "0x" + "a" * 40
BOB = "0x" + "b" * 40


class SwitchableStore(BallotStore):
    """Ballot store whose writes fail while ``failing`` is set."""

    def __init__(self, data_dir):
        super().__init__(data_dir)
        self.failing = False

    def save(self, address, payload):
        if self.failing:
            raise BallotStorageError("Disk full", details={"address": address})
        super().save(address, payload)


@pytest.fixture
def config(make_config):
    return make_config(CALLER_HEADER="X-Caller-Address", EVENT_QUERY_LIMIT=5)


@pytest.fixture
def app(ballot, config):
    """Create a Flask test application."""
    app = Flask(__name__)
    register_blueprints(app, ballot, config=config)
    return app


@pytest.fixture
def client(app):
    """Create a test client."""
    return app.test_client()


def as_caller(address):
    return {"X-Caller-Address": address}


def post(client, path, caller=None, json=None):
    return client.post(path, json=json or {}, headers=as_caller(caller) if caller else {})


class TestReadEndpoints:
    def test_current_round(self, client):
        response = client.get("/ballot/round")
        data = response.get_json()

        assert response.status_code == 200
        assert data["success"] is True
        assert data["round"] == 0
        assert data["state"] == "open"
        assert data["leader"] == 0
        assert data["winner"] is None
        assert [p["name"] for p in data["proposals"]] == ["alpha", "beta", "gamma"]

    def test_unknown_round(self, client):
        response = client.get("/ballot/rounds/3")
        assert response.status_code == 404
        assert response.get_json() == {"success": False, "error": "Round 3 not found", "code": "round_not_found"}

    def test_voter_record(self, client):
        data = client.get(f"/ballot/voters/{CHAIR}").get_json()
        assert data["weight"] == 1
        assert data["voted"] is False
        assert data["round"] == 0

    def test_voter_invalid_address(self, client):
        response = client.get("/ballot/voters/" + "0x" + "0" * 40)
        assert response.status_code == 400
        assert response.get_json()["code"] == "InvalidAddress"

    def test_invalid_round_query(self, client):
        assert client.get("/ballot/winner?round=abc").status_code == 400
        assert client.get("/ballot/voters/0xabc?round=-1").status_code == 400

    def test_is_admin(self, client):
        assert client.get("/ballot/admin", headers=as_caller(OWNER)).get_json()["is_admin"] is True
        assert client.get("/ballot/admin", headers=as_caller(ALICE)).get_json()["is_admin"] is False
        assert client.get("/ballot/admin").status_code == 401

    def test_request_id_echoed(self, client):
        response = client.get("/ballot/round", headers={"X-Request-ID": "trace-1"})
        assert response.headers["X-Request-ID"] == "trace-1"
        assert client.get("/ballot/round").headers.get("X-Request-ID")


class TestRights:
    def test_missing_caller(self, client):
        response = post(client, "/ballot/rights", json={"voter": ALICE})
        assert response.status_code == 401
        assert response.get_json()["code"] == "missing_caller"

    def test_grant(self, client, ballot):
        response = post(client, "/ballot/rights", CHAIR, {"voter": ALICE})
        assert response.status_code == 200
        assert response.get_json()["weight"] == 1
        assert ballot.get_voter(ALICE).weight == 1

    def test_grant_by_non_chairperson(self, client, ballot):
        response = post(client, "/ballot/rights", OWNER, {"voter": ALICE})
        assert response.status_code == 403
        assert response.get_json()["code"] == "Unauthorized"
        assert ballot.get_voter(ALICE).weight == 0

    def test_grant_twice(self, client):
        post(client, "/ballot/rights", CHAIR, {"voter": ALICE})
        response = post(client, "/ballot/rights", CHAIR, {"voter": ALICE})
        assert response.status_code == 409
        assert response.get_json()["code"] == "AlreadyHasRight"

    def test_invalid_payload(self, client):
        response = post(client, "/ballot/rights", CHAIR, {"voter": "   "})
        assert response.status_code == 400
        assert response.get_json()["code"] == "invalid_payload"


class TestVotingFlow:
    def test_vote(self, client, ballot):
        post(client, "/ballot/rights", CHAIR, {"voter": ALICE})
        response = post(client, "/ballot/vote", ALICE, {"proposal_index": 2})

        assert response.status_code == 200
        assert response.get_json()["vote_count"] == 1
        assert ballot.get_voter(ALICE).vote == 2

    @pytest.mark.parametrize("payload", [{}, {"proposal_index": "1"}, {"proposal_index": -1}, {"proposal_index": 1.5}])
    def test_vote_payload_validation(self, client, payload):
        response = post(client, "/ballot/vote", CHAIR, payload)
        assert response.status_code == 400
        assert response.get_json()["code"] == "invalid_payload"

    def test_vote_out_of_range(self, client):
        response = post(client, "/ballot/vote", CHAIR, {"proposal_index": 9})
        assert response.status_code == 400
        assert response.get_json()["code"] == "InvalidProposalIndex"

    def test_vote_without_right(self, client):
        response = post(client, "/ballot/vote", ALICE, {"proposal_index": 0})
        assert response.status_code == 409
        assert response.get_json()["code"] == "NoRightToVote"

    def test_delegate(self, client, ballot):
        post(client, "/ballot/vote", CHAIR, {"proposal_index": 1})
        post(client, "/ballot/rights", CHAIR, {"voter": ALICE})

        response = post(client, "/ballot/delegate", ALICE, {"to": CHAIR})

        assert response.get_json()["delegate"] == CHAIR
        assert ballot.get_proposals()[1].vote_count == 2

    def test_self_delegation(self, client):
        response = post(client, "/ballot/delegate", CHAIR, {"to": CHAIR})
        assert response.status_code == 400
        assert response.get_json()["code"] == "SelfDelegation"

    def test_delegation_cycle(self, client, ballot):
        post(client, "/ballot/rights", CHAIR, {"voter": ALICE})
        post(client, "/ballot/rights", CHAIR, {"voter": BOB})
        post(client, "/ballot/delegate", ALICE, {"to": BOB})
        before = ballot.to_dict()

        response = post(client, "/ballot/delegate", BOB, {"to": ALICE})

        assert response.status_code == 409
        assert response.get_json()["code"] == "DelegationCycle"
        assert ballot.to_dict() == before


class TestRoundLifecycle:
    def test_open_before_confirm(self, client):
        response = post(client, "/ballot/rounds", CHAIR, {"proposals": ["x"]})
        assert response.status_code == 409
        assert response.get_json()["code"] == "RoundNotReady"

    def test_confirm_requires_admin(self, client):
        response = post(client, "/ballot/confirm", ALICE)
        assert response.status_code == 403

    def test_confirm_and_open(self, client):
        post(client, "/ballot/vote", CHAIR, {"proposal_index": 1})

        confirmed = post(client, "/ballot/confirm", OWNER).get_json()
        assert confirmed["winning_proposal"] == 1
        assert confirmed["winner_name"] == "beta"

        again = post(client, "/ballot/confirm", OWNER)
        assert again.status_code == 409
        assert again.get_json()["code"] == "WinnerAlreadyConfirmed"

        opened = post(client, "/ballot/rounds", CHAIR, {"proposals": ["x", "y"]})
        assert opened.status_code == 201
        assert opened.get_json()["round"] == 1

        current = client.get("/ballot/round").get_json()
        assert current["round"] == 1
        assert [p["name"] for p in current["proposals"]] == ["x", "y"]

        past = client.get("/ballot/rounds/0").get_json()
        assert past["state"] == "confirmed"
        assert past["winner"] == "beta"

    def test_open_with_invalid_names(self, client):
        post(client, "/ballot/confirm", OWNER)
        assert post(client, "/ballot/rounds", CHAIR, {"proposals": []}).status_code == 400
        response = post(client, "/ballot/rounds", CHAIR, {"proposals": ["x" * 33]})
        assert response.status_code == 400
        assert response.get_json()["code"] == "InvalidProposalName"

    def test_winner_query(self, client):
        post(client, "/ballot/vote", CHAIR, {"proposal_index": 2})
        data = client.get("/ballot/winner").get_json()
        assert data["winning_proposal"] == 2
        assert data["winner_name"] == "gamma"
        assert data["confirmed"] is False

    def test_winner_of_unopened_round(self, client):
        response = client.get("/ballot/winner?round=4")
        assert response.status_code == 400
        assert response.get_json()["code"] == "InvalidProposalIndex"


class TestRolesAndEvents:
    def test_transfer_chairperson(self, client, ballot):
        response = post(client, "/ballot/roles/chairperson", OWNER, {"address": ALICE})
        assert response.get_json() == {"success": True, "role": "chairperson", "address": ALICE}
        assert ballot.chairperson == ALICE

    def test_unknown_role(self, client):
        assert post(client, "/ballot/roles/king", OWNER, {"address": ALICE}).status_code == 404

    def test_transfer_requires_admin(self, client):
        response = post(client, "/ballot/roles/owner", ALICE, {"address": ALICE})
        assert response.status_code == 403

    def test_events(self, client):
        for voter in (ALICE, BOB):
            post(client, "/ballot/rights", CHAIR, {"voter": voter})

        data = client.get("/ballot/events?limit=2").get_json()
        assert data["count"] == 2
        assert [e["event_type"] for e in data["events"]] == ["RightGranted", "RightGranted"]

    def test_events_limit_capped_by_config(self, client):
        for index in range(8):
            post(client, "/ballot/rights", CHAIR, {"voter": "0x" + format(index + 1, "040x")})
        assert client.get("/ballot/events?limit=50").get_json()["count"] == 5

    def test_events_invalid_limit(self, client):
        assert client.get("/ballot/events?limit=0").status_code == 400


class TestPersistence:
    def test_changes_are_written_to_store(self, temp_data_dir, config):
        store = BallotStore(temp_data_dir)
        factory = BallotFactory(store=store, config=config)
        ballot = factory.create_ballot(CHAIR, ["a", "b"])
        app = Flask(__name__)
        register_blueprints(app, ballot, factory=factory, config=config)
        client = app.test_client()

        post(client, "/ballot/vote", CHAIR, {"proposal_index": 1})

        saved = store.load(ballot.address)
        assert saved["registry"]["proposals"]["0"][1]["vote_count"] == 1

    def test_failed_write_leaves_ballot_unchanged(self, temp_data_dir, config):
        store = SwitchableStore(temp_data_dir)
        factory = BallotFactory(store=store, config=config)
        ballot = factory.create_ballot(CHAIR, ["a", "b"])
        app = Flask(__name__)
        register_blueprints(app, ballot, factory=factory, config=config)
        client = app.test_client()
        before = ballot.to_dict()

        store.failing = True
        response = post(client, "/ballot/vote", CHAIR, {"proposal_index": 1})

        assert response.status_code == 500
        assert response.get_json()["code"] == "StorageError"
        assert ballot.to_dict() == before
        assert not ballot.get_voter(CHAIR).voted

        store.failing = False
        retry = post(client, "/ballot/vote", CHAIR, {"proposal_index": 1})

        assert retry.status_code == 200
        assert retry.get_json()["vote_count"] == 1
        assert store.load(ballot.address)["registry"]["proposals"]["0"][1]["vote_count"] == 1

    def test_failed_write_undoes_round_opening(self, temp_data_dir, make_config):
        config = make_config(REGRANT_CHAIRPERSON_EACH_ROUND=True)
        store = SwitchableStore(temp_data_dir)
        factory = BallotFactory(store=store, config=config)
        ballot = factory.create_ballot(CHAIR, ["a"], owner=OWNER)
        app = Flask(__name__)
        register_blueprints(app, ballot, factory=factory, config=config)
        client = app.test_client()
        post(client, "/ballot/confirm", OWNER)

        store.failing = True
        response = post(client, "/ballot/rounds", CHAIR, {"proposals": ["x"]})

        assert response.status_code == 500
        assert ballot.current_round() == 0
        assert not ballot.registry.is_opened(1)
        assert ballot.get_voter(CHAIR, round_id=1).weight == 0
        assert ballot.winner_of(0) == b"a"

    def test_confirm_response_unaffected_by_concurrent_round_opening(self, temp_data_dir, config):
        store = SwitchableStore(temp_data_dir)
        factory = BallotFactory(store=store, config=config)
        ballot = factory.create_ballot(CHAIR, ["a", "b"])
        app = Flask(__name__)
        register_blueprints(app, ballot, factory=factory, config=config)
        client = app.test_client()
        opener = threading.Thread(target=ballot.open_next_round, args=(CHAIR, ["z"]))
        blocked = []

        def save_and_race(address, payload):
            if payload["registry"]["winners"] and not opener.is_alive() and not blocked:
                opener.start()
                opener.join(timeout=0.2)
                blocked.append(opener.is_alive())
            BallotStore.save(store, address, payload)

        store.save = save_and_race
        response = post(client, "/ballot/confirm", CHAIR)
        opener.join(timeout=5)

        assert blocked == [True]
        assert response.status_code == 200
        assert response.get_json()["round"] == 0
        assert response.get_json()["winner_name"] == "a"
        assert ballot.current_round() == 1


class TestPackage:
    def test_module_docstring(self):
        import roundvote.core.api_blueprints as api_blueprints

        assert "register_blueprints" in api_blueprints.__doc__
