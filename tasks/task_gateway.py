import asyncio
import argparse

from rxgateway import BackoffPolicy, GatewayConfig, GatewayConnection, GatewayDelegate
from rxgateway.telemetry import ConsoleLogRecordExporter, configure_telemetry


class PrintingDelegate(GatewayDelegate):
    def on_connection_established(self) -> None:
        print("connection established")

    def on_connection_closed(self) -> None:
        print("connection closed")

    def on_message(self, payload) -> None:
        print(f"dispatch {payload.t} (s={payload.s}): {payload.d}")


def build_parser(subparsers: argparse._SubParsersAction):
    parser = subparsers.add_parser("gateway", help="connect to a gateway and print its dispatches.")
    parser.add_argument("--url", type=str, default="ws://localhost:8888/gateway")
    parser.add_argument("--token", type=str, default="")
    parser.add_argument("--log_format", type=str, choices=["text", "json"], default="text")
    parser.add_argument("--max_delay", type=float, default=60.0)
    parser.set_defaults(func=task)

def task(parsed_args: argparse.Namespace):

    async def run_gateway():
        tracer_provider, logger_provider = configure_telemetry(
            service_name="rxgateway-task",
            log_exporter=ConsoleLogRecordExporter(format=parsed_args.log_format),
            batch_logs=False,
        )

        connection = GatewayConnection(
            GatewayConfig(
                endpoint=parsed_args.url,
                identify={"token": parsed_args.token},
                name="GatewayTask",
            ),
            delegate=PrintingDelegate(),
            backoff_policy=BackoffPolicy(max_delay=parsed_args.max_delay),
            tracer_provider=tracer_provider,
            logger_provider=logger_provider,
        )

        connect_task = asyncio.create_task(connection.connect())
        try:
            await asyncio.Future()
        finally:
            connect_task.cancel()
            await connection.dispose()

    try:
        asyncio.run(run_gateway())

    except KeyboardInterrupt:
        print("\nKeyboard Interrupt.")
