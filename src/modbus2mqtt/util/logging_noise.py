import asyncio
import logging
import time

NOISY_MESSAGE_MARKERS: tuple[str, ...] = (
    "SerialTransport.intern_read_ready",
    "Unable to decode frame",
    "Unable to decode request",
    "Unknown response",
)


class RateLimitFilter(logging.Filter):
    """Pass an identical (logger, level, message) record at most once per period."""

    def __init__(self, period_sec: float = 2.0, clock=time.monotonic):
        super().__init__()
        self.period = period_sec
        self._clock = clock
        self._last: dict[tuple, float] = {}

    def filter(self, record: logging.LogRecord) -> bool:
        key = (record.name, record.levelno, record.getMessage())
        now = self._clock()
        last = self._last.get(key)
        if last is not None and now - last < self.period:
            return False
        self._last[key] = now
        return True


def quiet_pymodbus_logs(level=logging.WARNING, rate_limit_sec: float = 2.0) -> None:
    pymodbus_log = logging.getLogger("pymodbus.logging")
    pymodbus_log.setLevel(level)
    pymodbus_log.addFilter(RateLimitFilter(rate_limit_sec))

    logging.getLogger("asyncio").setLevel(logging.ERROR)


def rate_limit_logger(name: str, period_sec: float = 30.0) -> None:
    """A dead device repeats the same warning every interval; keep one per period."""
    logging.getLogger(name).addFilter(RateLimitFilter(period_sec))


def is_modbus_noise(ctx: dict) -> bool:
    exc = ctx.get("exception")
    msg: str = ctx.get("message", "")
    if exc is not None and exc.__class__.__name__ == "ModbusIOException":
        return True
    return any(marker in msg for marker in NOISY_MESSAGE_MARKERS)


def install_asyncio_noise_suppressor() -> None:
    """
    Route RS-485 / TCP framing noise surfacing as unhandled loop exceptions
    to a quiet logger; everything else goes to the previous handler.
    """
    loop = asyncio.get_running_loop()
    default_handler = loop.get_exception_handler()

    def handler(loop, ctx):
        if is_modbus_noise(ctx):
            logging.getLogger("pymodbus.rtunoise").warning(
                "RTU noise / bad frame suppressed: %s", ctx.get("exception") or ctx.get("message", "")
            )
            return

        if default_handler:
            default_handler(loop, ctx)
        else:
            loop.default_exception_handler(ctx)

    loop.set_exception_handler(handler)
