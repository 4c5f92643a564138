"""API tests for referral endpoints."""

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from stripe import StripeError

from app.domain.referral_operations import InvalidReferralCodeError, SelfReferralError
from tests.helpers.mock_factories import make_mock_referral, make_mock_student

URL = "/api/v1/referrals"


@pytest.fixture
def referral_api_ops():
    with (
        patch("app.api.v1.referrals.student_ops") as student_ops,
        patch("app.api.v1.referrals.referral_ops") as referral_ops,
        patch(
            "app.api.v1.referrals.update_referrer_discount", new_callable=AsyncMock
        ) as update_discount,
    ):
        student_ops.get = AsyncMock(return_value=None)
        student_ops.get_by_parent = AsyncMock(return_value=[])
        referral_ops.get_referral_summary = AsyncMock(
            return_value={"referral_code": "K7QX2M", "active_referrals": 0, "referrals": []}
        )
        referral_ops.record_referral = AsyncMock()
        referral_ops.get_for_referred_user = AsyncMock(return_value=[])
        referral_ops.set_status = AsyncMock(return_value=[])
        yield {"student": student_ops, "referral": referral_ops, "update_discount": update_discount}


class TestGetReferrals:
    @pytest.mark.anyio
    async def test_student_summary(self, api_client, referral_api_ops):
        student = make_mock_student(name="Mina")
        referral_api_ops["student"].get.return_value = student
        active = [make_mock_referral(status="active"), make_mock_referral(status="active")]
        referral_api_ops["referral"].get_referral_summary.return_value = {
            "referral_code": "K7QX2M",
            "active_referrals": 2,
            "referrals": active,
        }

        resp = await api_client.get(URL, params={"studentId": str(student.id)})

        assert resp.status_code == 200
        body = resp.json()
        assert body["studentId"] == str(student.id)
        assert body["studentName"] == "Mina"
        assert body["referralCode"] == "K7QX2M"
        assert body["activeReferrals"] == 2
        assert body["discountPercent"] == 40
        assert len(body["referrals"]) == 2
        assert body["referrals"][0]["status"] == "active"

    @pytest.mark.anyio
    async def test_unknown_student(self, api_client, referral_api_ops):
        resp = await api_client.get(URL, params={"studentId": str(uuid.uuid4())})

        assert resp.status_code == 404

    @pytest.mark.anyio
    async def test_account_summary(self, api_client, referral_api_ops):
        parent_id = uuid.uuid4()
        referral_api_ops["student"].get_by_parent.return_value = [
            make_mock_student(parent_id=parent_id, name="Mina"),
            make_mock_student(parent_id=parent_id, name="Jae"),
        ]

        resp = await api_client.get(URL, params={"userId": str(parent_id)})

        assert resp.status_code == 200
        summaries = resp.json()["studentReferrals"]
        assert [s["studentName"] for s in summaries] == ["Mina", "Jae"]
        assert all(s["discountPercent"] == 0 for s in summaries)

    @pytest.mark.anyio
    async def test_requires_student_or_user(self, api_client, referral_api_ops):
        resp = await api_client.get(URL)

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Student ID or User ID is required"


class TestRecordReferral:
    @pytest.mark.anyio
    async def test_records(self, api_client, referral_api_ops):
        referred_user_id = uuid.uuid4()
        referral_api_ops["referral"].record_referral.return_value = make_mock_referral(
            referred_user_id=referred_user_id, referral_code="K7QX2M", status="trial"
        )

        resp = await api_client.post(
            URL, json={"referralCode": "K7QX2M", "referredUserId": str(referred_user_id)}
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["referral"]["referralCode"] == "K7QX2M"
        assert body["referral"]["referredUserId"] == str(referred_user_id)

    @pytest.mark.anyio
    async def test_invalid_code(self, api_client, referral_api_ops):
        referral_api_ops["referral"].record_referral.side_effect = InvalidReferralCodeError()

        resp = await api_client.post(
            URL, json={"referralCode": "NOPE99", "referredUserId": str(uuid.uuid4())}
        )

        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid referral code"

    @pytest.mark.anyio
    async def test_self_referral(self, api_client, referral_api_ops):
        referral_api_ops["referral"].record_referral.side_effect = SelfReferralError()

        resp = await api_client.post(
            URL, json={"referralCode": "K7QX2M", "referredUserId": str(uuid.uuid4())}
        )

        assert resp.status_code == 400
        assert resp.json()["detail"] == "You cannot use your own referral code"


class TestUpdateReferralStatus:
    @pytest.mark.anyio
    async def test_invalid_status(self, api_client, referral_api_ops):
        resp = await api_client.put(
            f"{URL}/status", json={"userId": str(uuid.uuid4()), "newStatus": "paused"}
        )

        assert resp.status_code == 400
        referral_api_ops["referral"].set_status.assert_not_awaited()

    @pytest.mark.anyio
    async def test_updates_edges_and_referrer_discounts(self, api_client, referral_api_ops):
        edges = [
            make_mock_referral(referral_code="AAAAAA", status="trial"),
            make_mock_referral(referral_code="BBBBBB", status="trial"),
        ]
        referral_api_ops["referral"].get_for_referred_user.return_value = edges
        referral_api_ops["referral"].set_status.return_value = edges

        resp = await api_client.put(
            f"{URL}/status", json={"userId": str(uuid.uuid4()), "newStatus": "active"}
        )

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "updated": 2}
        codes = [c[0][1] for c in referral_api_ops["update_discount"].call_args_list]
        assert codes == ["AAAAAA", "BBBBBB"]

    @pytest.mark.anyio
    async def test_stripe_failure_is_502(self, api_client, referral_api_ops):
        edges = [make_mock_referral(referral_code="AAAAAA", status="active")]
        referral_api_ops["referral"].set_status.return_value = edges
        referral_api_ops["update_discount"].side_effect = StripeError("timeout")

        resp = await api_client.put(
            f"{URL}/status", json={"userId": str(uuid.uuid4()), "newStatus": "cancelled"}
        )

        assert resp.status_code == 502
