import asyncio
import itertools
import json
import uuid

from websockets.asyncio.server import serve

from rxgateway import GatewayConfig, GatewayConnection, Opcode

# this example runs a tiny gateway speaking the Hello/Identify/Heartbeat protocol,
# and a GatewayConnection that connects to it and prints the dispatches.


# run this on the server side
def server():
    async def handler(websocket):
        seq = itertools.count(1)

        def dispatch(t, d):
            return json.dumps({"op": Opcode.DISPATCH, "d": d, "s": next(seq), "t": t})

        await websocket.send(json.dumps({"op": Opcode.HELLO, "d": {"heartbeat_interval": 15000}}))
        async for message in websocket:
            payload = json.loads(message)
            op = payload.get("op")

            if op == Opcode.HEARTBEAT:
                await websocket.send(json.dumps({"op": Opcode.HEARTBEAT_ACK}))
            elif op == Opcode.IDENTIFY:
                await websocket.send(dispatch("READY", {"session_id": uuid.uuid4().hex}))
            elif op == Opcode.RESUME:
                await websocket.send(dispatch("RESUMED", {}))

    async def test_gateway_S():
        async with serve(handler, "0.0.0.0", 8888):
            await asyncio.Future()

    try:
        asyncio.run(test_gateway_S())

    except KeyboardInterrupt:
        print("\nKeyboard Interrupt.")


# run this on the client side
def client():
    async def test_gateway_C():
        connection = GatewayConnection(
            GatewayConfig(endpoint="ws://localhost:8888/gateway", identify={"token": "demo"}),
        )
        connection.dispatches.subscribe(lambda payload: print(payload.t, payload.d))
        connection.state.subscribe(print)

        await connection.connect()

        i = 0
        while True:
            await asyncio.sleep(5)
            await connection.send_opcode_message(Opcode.DISPATCH, {"ping": i})
            i += 1

    try:
        asyncio.run(test_gateway_C())

    except KeyboardInterrupt:
        print("\nKeyboard Interrupt.")
