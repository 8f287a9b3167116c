# Overview: HTTP-level coverage for status code mapping across the staff, driver and customer APIs.

import io
import os

from lastmile.extensions import db
from lastmile.models import Delivery, DeliveryEvidence, EvidenceType, Order, OrderStatus, OrderType


def _stops(route_id):
    return (
        db.session.query(Delivery)
        .filter_by(delivery_route_id=route_id)
        .order_by(Delivery.sort_order)
        .all()
    )


class TestSystem:
    def test_health(self, client, db_session):
        response = client.get("/api/health")

        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"


class TestRoutesApi:
    def test_create_route_accepts_camel_case_ids(self, client, db_session, make_order):
        orders = [make_order(), make_order()]

        response = client.post("/api/routes", json={"orderIds": [orders[1].id, orders[0].id], "name": "Ruta norte"})

        assert response.status_code == 201
        route = response.get_json()["route"]
        assert route["name"] == "Ruta norte"
        assert [d["order_id"] for d in route["deliveries"]] == [orders[1].id, orders[0].id]
        assert route["driver_link"].startswith("https://tienda.test/repartidor/")

    def test_create_route_with_only_pickups_is_400(self, client, db_session, make_order):
        pickup = make_order(order_type=OrderType.PICKUP)

        response = client.post("/api/routes", json={"order_ids": [pickup.id]})

        assert response.status_code == 400
        assert "error" in response.get_json()

    def test_unknown_route_is_404(self, client, db_session):
        assert client.get("/api/routes/9999").status_code == 404
        assert client.post("/api/routes/9999/start").status_code == 404

    def test_start_twice_is_400(self, client, db_session, make_route, notifications):
        route = make_route(count=1)

        assert client.post(f"/api/routes/{route.id}/start").status_code == 200
        assert client.post(f"/api/routes/{route.id}/start").status_code == 400

    def test_delete_releases_orders(self, client, db_session, make_route, notifications):
        route = make_route(count=2)
        route_id = route.id
        order_ids = sorted(s.order_id for s in _stops(route_id))

        response = client.delete(f"/api/routes/{route_id}")

        assert response.status_code == 200
        assert sorted(response.get_json()["released_order_ids"]) == order_ids
        assert client.get(f"/api/routes/{route_id}").status_code == 404

    def test_reorder(self, client, db_session, make_route):
        route = make_route(count=3)
        s1, s2, s3 = _stops(route.id)

        response = client.put(f"/api/routes/{route.id}/reorder", json={"delivery_ids": [s3.id, s2.id, s1.id]})

        assert response.status_code == 200
        assert [d["delivery_id"] for d in response.get_json()["route"]["deliveries"]] == [s3.id, s2.id, s1.id]


class TestDriverApi:
    def test_unknown_token_is_404(self, client, db_session):
        assert client.get("/api/driver/not-a-token").status_code == 404

    def test_deliver_with_photo_and_replay(self, app, client, db_session, make_route, notifications):
        route = make_route(count=2, start=True)
        first = _stops(route.id)[0]
        url = f"/api/driver/{route.driver_token}/deliver/{first.id}"

        response = client.post(
            url,
            data={"notes": "Dejado en portería", "evidence": (io.BytesIO(b"\xff\xd8jpeg"), "foto.jpg")},
            content_type="multipart/form-data",
        )

        assert response.status_code == 200
        body = response.get_json()
        assert body["replayed"] is False
        assert body["delivery"]["status"] == "Delivered"
        assert body["next_delivery_id"] == _stops(route.id)[1].id

        evidence = db.session.query(DeliveryEvidence).filter_by(delivery_id=first.id).one()
        assert evidence.evidence_type == EvidenceType.DELIVERY_PROOF
        assert os.path.exists(os.path.join(app.config["EVIDENCE_UPLOAD_DIR"], evidence.image_path))

        again = client.post(url, data={"notes": "Dejado en portería"}, content_type="multipart/form-data")
        assert again.status_code == 200
        assert again.get_json()["replayed"] is True

    def test_bad_photo_extension_is_400(self, client, db_session, make_route, notifications):
        route = make_route(count=1, start=True)
        stop = _stops(route.id)[0]

        response = client.post(
            f"/api/driver/{route.driver_token}/deliver/{stop.id}",
            data={"evidence": (io.BytesIO(b"MZ"), "virus.exe")},
            content_type="multipart/form-data",
        )

        assert response.status_code == 400
        assert db.session.get(Delivery, stop.id).status.value == "InTransit"

    def test_rejected_delivery_leaves_no_photo_behind(self, app, client, db_session, make_route):
        route = make_route(count=1)
        stop = _stops(route.id)[0]
        evidence_dir = os.path.join(app.config["EVIDENCE_UPLOAD_DIR"], "evidence")
        os.makedirs(evidence_dir, exist_ok=True)
        before = set(os.listdir(evidence_dir))

        response = client.post(
            f"/api/driver/{route.driver_token}/deliver/{stop.id}",
            data={"evidence": (io.BytesIO(b"\xff\xd8jpeg"), "foto.jpg")},
            content_type="multipart/form-data",
        )

        assert response.status_code == 400
        assert set(os.listdir(evidence_dir)) == before
        assert db.session.query(DeliveryEvidence).filter_by(delivery_id=stop.id).count() == 0

    def test_failure_on_resolved_stop_discards_its_photo(self, app, client, db_session, make_route, notifications):
        route = make_route(count=2, start=True)
        stop = _stops(route.id)[0]
        client.post(f"/api/driver/{route.driver_token}/deliver/{stop.id}", json={})
        evidence_dir = os.path.join(app.config["EVIDENCE_UPLOAD_DIR"], "evidence")
        os.makedirs(evidence_dir, exist_ok=True)
        before = set(os.listdir(evidence_dir))

        response = client.post(
            f"/api/driver/{route.driver_token}/fail/{stop.id}",
            data={"reason": "Ausente", "evidence": (io.BytesIO(b"\xff\xd8jpeg"), "foto.jpg")},
            content_type="multipart/form-data",
        )

        assert response.status_code == 400
        assert set(os.listdir(evidence_dir)) == before

    def test_stop_from_another_route_is_404(self, client, db_session, make_route, notifications):
        mine = make_route(count=1, start=True)
        other = make_route(count=1, start=True)
        foreign = _stops(other.id)[0]

        response = client.post(f"/api/driver/{mine.driver_token}/deliver/{foreign.id}", json={})

        assert response.status_code == 404

    def test_fail_requires_reason(self, client, db_session, make_route, notifications):
        route = make_route(count=1, start=True)
        stop = _stops(route.id)[0]

        assert client.post(f"/api/driver/{route.driver_token}/fail/{stop.id}", json={}).status_code == 400

        response = client.post(f"/api/driver/{route.driver_token}/fail/{stop.id}", json={"reason": "Nadie en casa"})
        assert response.status_code == 200
        assert response.get_json()["route_completed"] is True

    def test_transit_on_pending_route_is_400(self, client, db_session, make_route):
        route = make_route(count=1)
        stop = _stops(route.id)[0]

        assert client.post(f"/api/driver/{route.driver_token}/transit/{stop.id}").status_code == 400

    def test_location_validation(self, client, db_session, make_route, notifications):
        route = make_route(count=1, start=True)
        url = f"/api/driver/{route.driver_token}/location"

        assert client.post(url, json={"lat": 95, "lng": 0}).status_code == 400
        assert client.post(url, json={"lat": -34.6, "lng": -58.4}).status_code == 200

    def test_driver_chat(self, client, db_session, make_route, notifications):
        route = make_route(count=1, start=True)
        url = f"/api/driver/{route.driver_token}/chat"

        assert client.post(url, json={"text": "Voy con demora"}).status_code == 201
        assert client.post(url, json={"text": ""}).status_code == 400
        messages = client.get(url).get_json()["messages"]
        assert [m["text"] for m in messages] == ["Voy con demora"]


class TestCustomerApi:
    def test_view_and_expiry(self, client, db_session, make_order):
        live = make_order()
        expired = make_order(expires_in_hours=-1)

        assert client.get(f"/api/pedido/{live.access_token}").status_code == 200
        assert client.get(f"/api/pedido/{expired.access_token}").status_code == 410
        assert client.get("/api/pedido/unknown-token").status_code == 404

    def test_in_transit_status_on_link(self, client, db_session, make_route, notifications):
        route = make_route(count=1, start=True)
        token = db.session.get(Order, _stops(route.id)[0].order_id).access_token

        body = client.get(f"/api/pedido/{token}").get_json()

        assert body["status"] == "InTransit"
        assert body["is_current_delivery"] is True

    def test_confirm_then_replay(self, client, db_session, make_order, notifications):
        order = make_order()
        url = f"/api/pedido/{order.access_token}/confirm"

        first = client.post(url)
        second = client.post(url)

        assert first.status_code == 200
        assert first.get_json()["status"] == "Confirmed"
        assert second.status_code == 200
        assert second.get_json()["replayed"] is True

    def test_confirm_delivered_is_400(self, client, db_session, make_order):
        order = make_order(status=OrderStatus.DELIVERED)

        assert client.post(f"/api/pedido/{order.access_token}/confirm").status_code == 400

    def test_customer_chat_reaches_only_active_orders(self, client, db_session, make_order, make_route, notifications):
        idle = make_order()
        route = make_route(count=1, start=True)
        token = db.session.get(Order, _stops(route.id)[0].order_id).access_token

        assert client.post(f"/api/pedido/{idle.access_token}/chat", json={"text": "Hola"}).status_code == 404
        assert client.post(f"/api/pedido/{token}/chat", json={"text": "Estoy en casa"}).status_code == 201
        assert len(client.get(f"/api/pedido/{token}/chat").get_json()["messages"]) == 1


class TestOrdersApi:
    def _payload(self):
        return {
            "client_name": "Lucía Gómez",
            "items": [{"product_name": "Blusa", "quantity": 1, "unit_price_cents": 25000}],
        }

    def test_manual_create_then_merge(self, client, db_session):
        created = client.post("/api/orders/manual", json=self._payload())
        merged = client.post("/api/orders/manual", json=self._payload())

        assert created.status_code == 201
        assert merged.status_code == 200
        assert merged.get_json()["merged"] is True
        assert merged.get_json()["order"]["id"] == created.get_json()["order"]["id"]

    def test_manual_without_json_is_400(self, client, db_session):
        assert client.post("/api/orders/manual", data="nope", content_type="text/plain").status_code == 400

    def test_patch_in_route_is_400(self, client, db_session, make_order):
        order = make_order()

        response = client.patch(f"/api/orders/{order.id}/status", json={"status": "InRoute"})

        assert response.status_code == 400

    def test_patch_unknown_order_is_404(self, client, db_session):
        assert client.patch("/api/orders/424242/status", json={"status": "Pending"}).status_code == 404

    def test_delete_order(self, client, db_session, make_order):
        order = make_order()
        order_id = order.id

        assert client.delete(f"/api/orders/{order_id}").status_code == 204
        assert client.get(f"/api/orders/{order_id}").status_code == 404

    def test_dashboard(self, client, db_session, make_order):
        make_order()

        body = client.get("/api/orders/dashboard").get_json()

        assert body["total_orders"] == 1
        assert body["pending_orders"] == 1


class TestClientsAndSettingsApi:
    def test_client_with_orders_cannot_be_deleted(self, client, db_session, make_order):
        order = make_order()

        assert client.delete(f"/api/clients/{order.client_id}").status_code == 409

    def test_client_crud(self, client, db_session):
        created = client.post("/api/clients", json={"name": "Marta", "phone": "555-0101"})
        client_id = created.get_json()["client"]["id"]

        assert created.status_code == 201
        assert client.patch(f"/api/clients/{client_id}", json={"address": "Calle 9"}).status_code == 200
        assert client.get(f"/api/clients/{client_id}").get_json()["client"]["address"] == "Calle 9"
        assert client.delete(f"/api/clients/{client_id}").status_code == 204
        assert client.get(f"/api/clients/{client_id}").status_code == 404

    def test_settings_update(self, client, db_session):
        response = client.put("/api/settings", json={"default_shipping_cost_cents": 7500})

        assert response.status_code == 200
        assert response.get_json()["settings"]["default_shipping_cost_cents"] == 7500
        assert client.put("/api/settings", json={"link_expiration_hours": 0}).status_code == 400

    def test_push_subscribe_validation(self, client, db_session):
        ok = client.post("/api/push/subscribe", json={
            "endpoint": "https://push.test/admin",
            "keys": {"p256dh": "k", "auth": "a"},
            "role": "admin",
        })

        assert ok.status_code == 200
        assert client.post("/api/push/subscribe", json={"role": "admin"}).status_code == 400

    def test_vapid_public_key(self, app, client, monkeypatch):
        monkeypatch.setitem(app.config, "VAPID_PUBLIC_KEY", None)
        assert client.get("/api/push/vapid-public-key").status_code == 503

        monkeypatch.setitem(app.config, "VAPID_PUBLIC_KEY", "BPublicKey")
        response = client.get("/api/push/vapid-public-key")

        assert response.status_code == 200
        assert response.get_json()["public_key"] == "BPublicKey"

    def test_push_test_broadcast_status_codes(self, app, client, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "VAPID_PRIVATE_KEY", None)
        monkeypatch.delitem(app.extensions, "lastmile.push_sender", raising=False)
        message = {"title": "Prueba", "body": "Hola"}

        assert client.post("/api/push/test", json=message).status_code == 404

        client.post("/api/push/subscribe", json={
            "endpoint": "https://push.test/admin",
            "keys": {"p256dh": "k", "auth": "a"},
            "role": "admin",
        })
        assert client.post("/api/push/test", json={"body": "Hola"}).status_code == 400
        assert client.post("/api/push/test", json=message).status_code == 503
