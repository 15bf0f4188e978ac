import unittest

from aiohttp import web
from aiohttp.test_utils import AioHTTPTestCase

from chatrelay.client.cli import format_event, parse_command, read_body


class TestParseCommand(unittest.TestCase):
    def test_commands_with_arguments(self):
        self.assertEqual(parse_command("/group abc hello there"), ("/group", ("abc", "hello there")))
        self.assertEqual(parse_command("/create-group Weekend plans"), ("/create-group", ("Weekend plans",)))
        self.assertEqual(parse_command("/join abc"), ("/join", ("abc",)))
        self.assertEqual(parse_command("  /history abc  "), ("/history", ("abc",)))

    def test_commands_without_arguments(self):
        self.assertEqual(parse_command("/list-groups"), ("/list-groups", ()))
        self.assertEqual(parse_command("help"), ("/help", ()))
        self.assertEqual(parse_command("/quit"), ("/quit", ()))

    def test_invalid_lines(self):
        self.assertEqual(parse_command("hello"), (None, ()))
        self.assertEqual(parse_command("/group abc"), (None, ()))
        self.assertEqual(parse_command("/join"), (None, ()))


class TestFormatEvent(unittest.TestCase):
    def test_message(self):
        line = format_event("message", {"groupId": "g", "senderUsername": "alice", "messageText": "hi"})
        self.assertEqual(line, "[GROUP g] alice: hi")

    def test_signal(self):
        self.assertEqual(format_event("offer", {"groupId": "g", "senderId": "u1"}), "[SIGNAL g] offer from u1")


class TestReadBody(AioHTTPTestCase):
    async def get_application(self):
        async def plain_error(request):
            return web.Response(status=500, text="500 Internal Server Error")

        async def json_error(request):
            return web.json_response({"error": "password must be at most 72 bytes"}, status=400)

        app = web.Application()
        app.add_routes([web.post("/plain", plain_error), web.post("/json", json_error)])
        return app

    async def test_plain_text_error_body(self):
        async with self.client.post("/plain") as resp:
            body = await read_body(resp)
        self.assertEqual(body, {"error": "500 Internal Server Error"})

    async def test_json_error_body(self):
        async with self.client.post("/json") as resp:
            body = await read_body(resp)
        self.assertEqual(body, {"error": "password must be at most 72 bytes"})


if __name__ == '__main__':
    unittest.main()
