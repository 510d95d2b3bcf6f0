import structlog, sys, logging


def setup_logging(level: int = logging.INFO, stream=None):
    # stdout is left to the caller, e.g. the CLI prints its JSON there
    stream = stream or sys.stderr
    logging.basicConfig(level=level, stream=stream)
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(stream),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger()
