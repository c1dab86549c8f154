import os
import logging
import yaml
from loguru import logger


def get_config(appname:str, app_path:str=None, config_file:str=None, subdir:str=None) -> dict | None:
    """return config of app

    Priority:
        1. prio: user specified file (if absolute path)
        2. prio: config in home directory ~/.nmclient
        3. prio: config in app directory
        4. prio: config in app ./conf/ directory
        5. prio: config in /etc/nmclient/

    Parameters
    ----------
    appname : str
        name of app
    app_path : str, optional
        path to app config, by default the current directory
    config_file : str, optional
        name of config, by default None
    subdir : str, optional
        name of subdir below ~/.nmclient and /etc/nmclient, by default None

    Returns
    -------
    config
        YAML object containing config
    """
    config_filename = config_file if config_file else f'{appname}.yaml'
    app_path = app_path if app_path else os.getcwd()
    sub = f'{subdir}/{appname}' if subdir else appname

    abs_path_config = config_file if config_file and config_file.startswith('/') else None
    homedir_config_file = f'{os.path.expanduser("~")}/.nmclient/{sub}/{config_filename}'
    local_config_file = f'{app_path}/{config_filename}'
    local_subdir_config_file = f'{app_path}/conf/{config_filename}'
    etc_config_file = f'/etc/nmclient/{sub}/{config_filename}'

    candidates = [abs_path_config, homedir_config_file, local_config_file,
                  local_subdir_config_file, etc_config_file]
    filename = next((c for c in candidates if c and os.path.exists(c)), None)
    if filename is None:
        logger.critical(f'neither {abs_path_config} nor {homedir_config_file}, {local_config_file} or '
                        f'{local_subdir_config_file} or {etc_config_file} exist')
        return None

    logger.debug(f'reading config {filename}')
    try:
        with open(filename) as f:
            return yaml.safe_load(f.read())
    except (OSError, yaml.YAMLError) as exc:
        logger.error(f'could not read or parse config; got exception {exc}')
        return None

def get_value_from_dict(dictionary:dict, keys:list, default=None):
    """get value from (nested) dict

    Parameters
    ----------
    dictionary : dict
        the source dict
    keys : list
        list of keys to follow
    default : any, optional
        returned if a key is missing

    Returns
    -------
    value
        the value (can be list, dict, str, int ....)
    """
    if dictionary is None:
        return default

    nested_dict = dictionary
    for key in keys:
        try:
            nested_dict = nested_dict[key]
        except (KeyError, IndexError, TypeError):
            return default

    return nested_dict

def get_loglevel(level:str) -> int:
    """map a loglevel name to a logging level (used for scrapli and paramiko)"""
    level = level.lower()
    if level == 'debug':
        return logging.DEBUG
    elif level == 'info':
        return logging.INFO
    elif level == 'warning':
        return logging.WARNING
    elif level == 'critical':
        return logging.CRITICAL
    elif level == 'error':
        return logging.ERROR
    elif level == 'none':
        return 100
    else:
        return logging.NOTSET
