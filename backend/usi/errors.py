"""Error kinds raised by the USI bridge."""


class EngineError(RuntimeError):
    pass


class StartupFailure(EngineError):
    """The engine binary could not be spawned."""


class HandshakeTimeout(EngineError):
    """usiok/readyok was not received in time."""


class RequestTimeout(EngineError):
    """No bestmove arrived before the request deadline."""


class UnexpectedExit(EngineError):
    """The engine process terminated."""
