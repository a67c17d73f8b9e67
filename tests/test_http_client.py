import asyncio
import unittest

from aiohttp import test_utils, web

from chesslink.client.base import ClientError, RateLimitedError
from chesslink.client.http import HttpLichessClient


async def _slow(request: web.Request) -> web.Response:
    await asyncio.sleep(1)
    return web.json_response({})


async def _limited(request: web.Request) -> web.Response:
    return web.Response(status=429, headers={"Retry-After": "7"})


async def _broken(request: web.Request) -> web.Response:
    return web.Response(status=500, text="boom")


async def _playing(request: web.Request) -> web.Response:
    if request.headers.get("Authorization") != "Bearer tok":
        return web.Response(status=401)
    return web.json_response({"nowPlaying": [{"gameId": "g1"}]})


class HttpLichessClientTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        app = web.Application()
        app.router.add_post("/board/game/{game_id}/move/{move}", _slow)
        app.router.add_get("/puzzle/next", _limited)
        app.router.add_post("/challenge/ai", _broken)
        app.router.add_get("/account/playing", _playing)
        self.server = test_utils.TestServer(app)
        await self.server.start_server()
        self.client = HttpLichessClient(str(self.server.make_url("")), token="tok", request_timeout=0.2)

    async def asyncTearDown(self) -> None:
        await self.client.close()
        await self.server.close()

    async def test_timeout_becomes_client_error(self) -> None:
        with self.assertRaises(ClientError) as ctx:
            await self.client.send_move("g1", "e2e4")
        self.assertIsInstance(ctx.exception.cause, asyncio.TimeoutError)

    async def test_rate_limit_carries_retry_after(self) -> None:
        with self.assertRaises(RateLimitedError) as ctx:
            await self.client.fetch_puzzle("next")
        self.assertEqual(ctx.exception.retry_after, 7.0)

    async def test_server_error_status(self) -> None:
        with self.assertRaises(ClientError) as ctx:
            await self.client.challenge_ai(1)
        self.assertEqual(ctx.exception.status, 500)

    async def test_now_playing(self) -> None:
        self.assertEqual(await self.client.fetch_now_playing(), [{"gameId": "g1"}])


if __name__ == "__main__":
    unittest.main()
