import sys
from functools import partialmethod
from loguru import logger

from nmclient.tools import tools

# severity of destructive changes (between WARNING and ERROR)
CHANGE_LOGLEVEL = 35


def _format(loglevel:str) -> str:
    if loglevel == "TRACE":
        return (
                "<green>{time:HH:mm:ss.SSS}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name: <18.18}</cyan> | <cyan>{function: <15.15}</cyan> | <cyan>{line: >3}</cyan> | "
                "{extra[extra]: <12} | <level>{message}</level>"
        )
    elif loglevel == "DEBUG":
        return (
                "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name: <18.18}</cyan> | <cyan>{function: <15.15}</cyan> | <cyan>{line: >3}</cyan> | "
                "{extra[extra]: <12} | <level>{message}</level>"
        )
    return (
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "{extra[extra]: <12} | <level>{message}</level>"
    )

def register_change_level():
    """create the CHANGE loglevel and logger.change() (once)"""
    try:
        logger.level("CHANGE")
    except ValueError:
        logger.level("CHANGE", no=CHANGE_LOGLEVEL, color="<magenta><bold>")
    if not hasattr(logger.__class__, 'change'):
        logger.__class__.change = partialmethod(logger.__class__.log, "CHANGE")

def create_logger_environment(config, cfg_loglevel=None, cfg_loghandler=None):
    """configure loguru using the general.logging section of config

    Parameters
    ----------
    config : dict
        the (yaml) config
    cfg_loglevel : str, optional
        overrides general.logging.loglevel
    cfg_loghandler : str, optional
        overrides general.logging.handler (stdout, stderr or a filename)
    """
    logging_config = tools.get_value_from_dict(config, ['general', 'logging'], default={}) or {}
    loglevel = cfg_loglevel if cfg_loglevel else logging_config.get('loglevel', 'INFO')
    handler_txt = cfg_loghandler if cfg_loghandler else logging_config.get('handler', 'sys.stdout')

    # loguru uses UPPER case loglevels
    loglevel = loglevel.upper()

    # evaluate handler
    if handler_txt == 'sys.stdout' or handler_txt == 'stdout':
        loghandler = sys.stdout
    elif handler_txt == 'sys.stderr' or handler_txt == 'stderr':
        loghandler = sys.stderr
    else:
        loghandler = handler_txt

    # remove existing logger
    logger.remove()
    logger.configure(extra={"extra": "unset"})
    logger.add(loghandler, level=loglevel, format=_format(loglevel))
    register_change_level()
    logger.enable("nmclient")

def minimal_logger(loglevel):
    """log to stdout using loglevel and enable the nmclient logger"""
    loglevel = loglevel.upper()
    logger.remove()
    logger.configure(extra={"extra": "unset"})
    logger.add(sys.stdout, level=loglevel, format=_format(loglevel))
    register_change_level()
    logger.enable("nmclient")

def telemetry_logger(event):
    """telemetry collaborator that logs OperationEvents

    destructive edits are logged at CHANGE, failures at ERROR and everything
    else at DEBUG.

    Examples
    --------
    >>> client = Client(target, telemetry=telemetry_logger)
    """
    register_change_level()
    message = (f'{event.kind} {event.path or "/"} on {event.target} ({event.protocol}) '
               f'{event.outcome} in {event.duration:.3f}s')
    if event.merge_policy:
        message += f' merge_policy={event.merge_policy}'
    bound = logger.bind(extra="telemetry")
    if event.outcome != 'ok':
        bound.error(f'{message} {event.error_kind}: {event.error}')
    elif event.destructive:
        bound.log("CHANGE", message)
    else:
        bound.debug(message)
