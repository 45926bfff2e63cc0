"""
Coupon evaluation rules and the coupon preview / admin endpoints.
"""
from datetime import datetime, timedelta

import pytest

import coupons
from conftest import auth_header
from coupons import claim_coupon, evaluate_coupon, unclaim_coupon
from errors import CouponError

NOW = datetime(2025, 6, 1, 12, 0, 0)


def coupon(**overrides):
    doc = {
        "code": "SAVE10",
        "discount_type": "percentage",
        "discount_value": 10,
        "min_order_amount": 0,
        "max_discount_amount": None,
        "is_active": True,
        "valid_from": NOW - timedelta(days=1),
        "valid_until": NOW + timedelta(days=1),
        "usage_limit": None,
        "used_count": 0,
        "used_by": [],
    }
    doc.update(overrides)
    return doc


class TestEvaluateCoupon:
    def test_percentage_discount_is_capped(self):
        quote = evaluate_coupon(1000, coupon(max_discount_amount=50), "u1", NOW)
        assert quote.discount_amount == 50
        assert quote.total_after_discount == 950

    def test_percentage_discount_under_cap(self):
        quote = evaluate_coupon(300, coupon(max_discount_amount=50), "u1", NOW)
        assert quote.discount_amount == 30

    def test_fixed_discount(self):
        quote = evaluate_coupon(800, coupon(discount_type="fixed", discount_value=100), "u1", NOW)
        assert quote.discount_amount == 100
        assert quote.total_after_discount == 700

    @pytest.mark.parametrize("doc, message", [
        (None, "Invalid or inactive coupon code"),
        (coupon(is_active=False), "Invalid or inactive coupon code"),
        (coupon(valid_from=NOW + timedelta(hours=1)), "Coupon is not yet valid"),
        (coupon(valid_until=NOW - timedelta(hours=1)), "Coupon has expired"),
        (coupon(usage_limit=2, used_count=2), "Coupon usage limit reached"),
        (coupon(used_by=["u1"], used_count=1), "Coupon already used by this user"),
        (coupon(min_order_amount=1000), "Minimum order amount is ₹1000"),
    ])
    def test_failures_are_distinct(self, doc, message):
        with pytest.raises(CouponError) as excinfo:
            evaluate_coupon(500, doc, "u1", NOW)
        assert excinfo.value.message == message

    def test_other_user_can_still_use_coupon(self):
        quote = evaluate_coupon(500, coupon(used_by=["u2"], used_count=1), "u1", NOW)
        assert quote.discount_amount == 50


class TestClaimCoupon:
    def test_claim_records_use_once(self, db):
        db["coupon"].insert_one(coupon())
        doc = db["coupon"].find_one({"code": "SAVE10"})

        assert claim_coupon(db, doc, "u1") is True
        # Stale used_count: a concurrent claim got in first
        assert claim_coupon(db, doc, "u2") is False

        stored = db["coupon"].find_one({"code": "SAVE10"})
        assert stored["used_count"] == 1
        assert stored["used_by"] == ["u1"]

    def test_unclaim_reverts(self, db):
        db["coupon"].insert_one(coupon())
        doc = db["coupon"].find_one({"code": "SAVE10"})
        claim_coupon(db, doc, "u1")

        unclaim_coupon(db, doc, "u1")

        stored = db["coupon"].find_one({"code": "SAVE10"})
        assert stored["used_count"] == 0
        assert stored["used_by"] == []


class TestApplyCoupon:
    def test_preview_does_not_claim(self, client, db, user, make_cake, customization):
        _, token = user
        cake_id = make_cake(price=500)
        client.post("/api/cart", json={"cake_id": cake_id, "quantity": 2, "customization": customization},
                    headers=auth_header(token))
        db["coupon"].insert_one(coupon(valid_from=None, valid_until=None))

        res = client.post("/api/cart/apply-coupon", json={"coupon_code": "save10"}, headers=auth_header(token))

        assert res.status_code == 200
        body = res.json()
        assert body["coupon"] == {"code": "SAVE10", "discount_amount": 100}
        assert body["total_after_discount"] == 900
        assert db["coupon"].find_one({"code": "SAVE10"})["used_count"] == 0

    def test_empty_cart(self, client, user):
        _, token = user
        res = client.post("/api/cart/apply-coupon", json={"coupon_code": "SAVE10"}, headers=auth_header(token))
        assert res.status_code == 400
        assert res.json()["detail"] == "Cart is empty"

    def test_code_must_be_alphanumeric(self, client, user):
        _, token = user
        res = client.post("/api/cart/apply-coupon", json={"coupon_code": "SAVE-10"}, headers=auth_header(token))
        assert res.status_code == 400
        assert "letters and numbers" in res.json()["detail"]


class TestAdminCoupons:
    def test_create_defaults_window_and_rejects_duplicate(self, client, admin):
        _, token = admin
        payload = {"code": "cake20", "discount_type": "fixed", "discount_value": 20}

        res = client.post("/api/coupons", json=payload, headers=auth_header(token))
        assert res.status_code == 201
        data = res.json()["data"]
        assert data["code"] == "CAKE20"
        assert data["used_count"] == 0
        assert data["valid_from"] and data["valid_until"]

        dup = client.post("/api/coupons", json=payload, headers=auth_header(token))
        assert dup.status_code == 400
        assert dup.json()["detail"] == "Coupon code already exists."

    def test_update_and_delete(self, client, admin):
        _, token = admin
        created = client.post("/api/coupons", json={"code": "CAKE20", "discount_type": "fixed",
                                                    "discount_value": 20}, headers=auth_header(token))
        coupon_id = created.json()["data"]["id"]

        res = client.put(f"/api/coupons/{coupon_id}", json={"code": "CAKE25", "discount_type": "fixed",
                                                             "discount_value": 25}, headers=auth_header(token))
        assert res.status_code == 200
        assert res.json()["data"]["discount_value"] == 25
        assert res.json()["data"]["valid_from"] == created.json()["data"]["valid_from"]

        assert client.delete(f"/api/coupons/{coupon_id}", headers=auth_header(token)).status_code == 200
        missing = client.delete(f"/api/coupons/{coupon_id}", headers=auth_header(token))
        assert missing.status_code == 404
        assert missing.json()["detail"] == "Coupon not found."

    def test_requires_admin(self, client, user):
        _, token = user
        res = client.get("/api/coupons", headers=auth_header(token))
        assert res.status_code == 403

    def test_update_keeps_usage_recorded_meanwhile(self, client, db, admin, monkeypatch):
        _, token = admin
        created = client.post("/api/coupons", json={"code": "CAKE20", "discount_type": "fixed",
                                                    "discount_value": 20}, headers=auth_header(token))
        coupon_id = created.json()["data"]["id"]
        real_document = coupons.coupon_document

        def document_then_order_claims(payload, existing=None):
            doc = real_document(payload, existing)
            db["coupon"].update_one({"_id": existing["_id"]},
                                    {"$inc": {"used_count": 1}, "$push": {"used_by": "u9"}})
            return doc

        monkeypatch.setattr(coupons, "coupon_document", document_then_order_claims)

        res = client.put(f"/api/coupons/{coupon_id}", json={"code": "CAKE20", "discount_type": "fixed",
                                                             "discount_value": 30}, headers=auth_header(token))

        assert res.status_code == 200
        data = res.json()["data"]
        assert data["discount_value"] == 30
        assert data["used_count"] == 1
        assert data["used_by"] == ["u9"]
