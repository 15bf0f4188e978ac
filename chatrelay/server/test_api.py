import asyncio

from aiohttp.test_utils import AioHTTPTestCase

from chatrelay.server.api import SERVICE_KEY
from chatrelay.server.config import Settings
from chatrelay.server.main import build_app
from chatrelay.server.repo import MemoryStore


async def receive_event(ws, name, timeout=2.0):
    """Read frames until one carries the named event."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        frame = await ws.receive_json(timeout=max(deadline - loop.time(), 0.01))
        if frame["event"] == name:
            return frame["data"]


class TestHttpApi(AioHTTPTestCase):
    async def get_application(self):
        return build_app(Settings(bcrypt_rounds=4), store=MemoryStore())

    async def login(self, username, password="pw"):
        resp = await self.client.post("/login", json={"username": username, "password": password})
        self.assertEqual(resp.status, 200)
        return (await resp.json())["userId"]

    async def test_login_registers_then_authenticates(self):
        resp = await self.client.post("/login", json={"username": "alice", "password": "pw"})
        self.assertEqual(resp.status, 200)
        body = await resp.json()
        self.assertEqual(body["username"], "alice")
        self.assertNotIn("passwordHash", body)

        again = await self.client.post("/login", json={"username": "alice", "password": "pw"})
        self.assertEqual((await again.json())["userId"], body["userId"])

    async def test_login_errors(self):
        await self.login("alice")
        resp = await self.client.post("/login", json={"username": "alice", "password": "bad"})
        self.assertEqual(resp.status, 401)
        self.assertIn("error", await resp.json())

        resp = await self.client.post("/login", json={"username": "alice"})
        self.assertEqual(resp.status, 400)

        resp = await self.client.post("/login", data="not json")
        self.assertEqual(resp.status, 400)

        resp = await self.client.post("/login", json=["alice", "pw"])
        self.assertEqual(resp.status, 400)

    async def test_long_password_is_bad_request(self):
        resp = await self.client.post("/login", json={"username": "alice", "password": "x" * 100})
        self.assertEqual(resp.status, 400)
        self.assertIn("72 bytes", (await resp.json())["error"])

    async def test_create_and_list_groups(self):
        alice = await self.login("alice")
        resp = await self.client.post("/groups", json={"groupName": "Team", "userId": alice})
        self.assertEqual(resp.status, 201)
        group = await resp.json()
        self.assertEqual(group["groupName"], "Team")
        self.assertEqual(group["members"], [alice])
        self.assertIn("createdAt", group)

        resp = await self.client.get("/groups")
        self.assertEqual(resp.status, 200)
        listed = await resp.json()
        self.assertEqual([g["groupId"] for g in listed], [group["groupId"]])
        self.assertEqual(listed[0]["memberUsernames"], ["alice"])

    async def test_create_group_errors(self):
        resp = await self.client.post("/groups", json={"groupName": "Team"})
        self.assertEqual(resp.status, 400)
        resp = await self.client.post("/groups", json={"groupName": "Team", "userId": "nobody"})
        self.assertEqual(resp.status, 404)

    async def test_history_of_unknown_group_is_empty(self):
        resp = await self.client.get("/history/nothing")
        self.assertEqual(resp.status, 200)
        self.assertEqual(await resp.json(), [])

    async def test_health(self):
        resp = await self.client.get("/health")
        self.assertEqual((await resp.json())["status"], "ok")

    async def test_chat_over_websocket(self):
        alice = await self.login("alice")
        resp = await self.client.post("/groups", json={"groupName": "Team", "userId": alice})
        group_id = (await resp.json())["groupId"]

        ws = await self.client.ws_connect("/ws")
        await ws.send_json({"event": "login", "data": {"userId": alice}})
        joined = await receive_event(ws, "userJoinedGroup")
        self.assertEqual(joined, {"groupId": group_id, "userId": alice, "username": "alice"})

        await ws.send_str("{broken")
        await ws.send_json({"event": "chatMessage", "data": {"groupId": group_id, "messageText": "hi"}})
        message = await receive_event(ws, "message")
        self.assertEqual(message["messageText"], "hi")
        self.assertEqual(message["senderUsername"], "alice")
        await ws.close()

        resp = await self.client.get(f"/history/{group_id}")
        history = await resp.json()
        self.assertEqual([(m["senderUsername"], m["messageText"]) for m in history], [("alice", "hi")])

    async def test_signaling_over_websocket(self):
        alice = await self.login("alice")
        bob = await self.login("bob")
        resp = await self.client.post("/groups", json={"groupName": "Call", "userId": alice})
        group_id = (await resp.json())["groupId"]
        self.app[SERVICE_KEY].groups.add_member(group_id, bob)

        ws_a = await self.client.ws_connect("/ws")
        await ws_a.send_json({"event": "login", "data": {"userId": alice}})
        await receive_event(ws_a, "userJoinedGroup")
        ws_b = await self.client.ws_connect("/ws")
        await ws_b.send_json({"event": "login", "data": {"userId": bob}})
        await receive_event(ws_b, "userJoinedGroup")

        offer = {"type": "offer", "sdp": "v=0\r\no=- 1 2 IN IP4 127.0.0.1\r\n"}
        await ws_a.send_json({"event": "offer", "data": {"groupId": group_id, "payload": offer}})
        relayed = await receive_event(ws_b, "offer")
        self.assertEqual(relayed, {"groupId": group_id, "payload": offer, "senderId": alice})

        await ws_b.close()
        left = await receive_event(ws_a, "userLeftGroup")
        self.assertEqual(left, {"groupId": group_id, "userId": bob})
        await ws_a.close()
