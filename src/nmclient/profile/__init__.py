"""credential profiles

A profile names the credentials of a group of devices. Passwords and ssh
passphrases are stored encrypted (Fernet token, key derived with PBKDF2)
and decrypted using ENCRYPTIONKEY, SALT and ITERATIONS from the environment
unless the key material is passed explicitly.

profiles:
  default:
    username: admin
    password: Z0FBQUFBQm...
    ssh_key: ~/.ssh/id_rsa
    ssh_key_passphrase: none
"""
import base64
import os
from loguru import logger
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from nmclient.model.target import Credentials


def _fernet(encryption_key:str, salt:str, iterations:int) -> Fernet:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=str.encode(salt),
        iterations=iterations,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(str.encode(encryption_key))))

def encrypt(password:str, encryption_key:str, salt:str, iterations:int=400000) -> str:
    """encrypt password

    Parameters
    ----------
    password : str
        clear password
    encryption_key : str
        encryption key
    salt : str
        salt
    iterations : int, optional
        iterations, by default 400000

    Returns
    -------
    encrypted : str
        base64 encoded and encrypted password
    """
    token = _fernet(encryption_key, salt, iterations).encrypt(str.encode(password))
    return base64.b64encode(token).decode()

def decrypt(token:str, encryption_key:str, salt:str, iterations:int=400000) -> str:
    """decrypt token

    Parameters
    ----------
    token : str
        token (base64 encoded encrypted password)
    encryption_key : str
        encryption key
    salt : str
        salt
    iterations : int, optional
        iterations, by default 400000

    Returns
    -------
    password : str
        clear password

    Raises
    ------
    ValueError
        if key, salt or iterations do not match the token
    """
    try:
        return _fernet(encryption_key, salt, iterations).decrypt(base64.b64decode(token)).decode("utf-8")
    except (InvalidToken, ValueError) as exc:
        logger.bind(extra="profile").error('wrong encryption key or salt')
        raise ValueError('could not decrypt token; wrong encryption key or salt') from exc


class Profile:
    """This class reads the profile configuration and sets the username, password, ssh_key and ssh_passphrase.

    Parameters
    ----------
    profile_config : dict
        the profile configuration
    profile_name : str
        the profile name that should be used
    username : str
        the username that should be used
    password : str
        the password that should be used
    ssh_key : str
        the ssh_key that should be used
    ssh_passphrase : str
        the ssh_passphrase that should be used
    encryption_key, salt, iterations : optional
        key material; read from ENCRYPTIONKEY, SALT and ITERATIONS if not set
    """
    def __init__(self, profile_config:dict=None, profile_name:str=None,
                 username:str=None, password:str=None,
                 ssh_key:str=None, ssh_passphrase:str=None,
                 encryption_key:str=None, salt:str=None, iterations:int=None):

        profile = (profile_config or {}).get('profiles', {}).get(profile_name, {}) if profile_name else {}
        self._encryption_key = encryption_key or os.getenv('ENCRYPTIONKEY')
        self._salt = salt or os.getenv('SALT')
        self._iterations = iterations or int(os.getenv('ITERATIONS', '400000'))

        self._username = profile.get('username')
        self._password = None
        self._ssh_passphrase = None

        password_token = profile.get('password')
        if self._username and password_token:
            logger.bind(extra="profile").debug(f'decrypting password of profile {profile_name}')
            self._password = self._decrypt(password_token)

        ssh_token = profile.get('ssh_key_passphrase')
        if ssh_token and str(ssh_token).lower() != 'none':
            logger.bind(extra="profile").debug(f'decrypting ssh passphrase of profile {profile_name}')
            self._ssh_passphrase = self._decrypt(ssh_token)

        # overwrite values if configured by user
        self._username = username if username else self._username
        self._password = password if password else self._password
        self._ssh_key = ssh_key if ssh_key else profile.get('ssh_key')
        self._ssh_passphrase = ssh_passphrase if ssh_passphrase else self._ssh_passphrase

        logger.bind(extra="profile").info(f'profile added username={self._username} password=xxx ssh_key={self._ssh_key}')

    def _decrypt(self, token:str) -> str:
        if not self._encryption_key or not self._salt:
            raise ValueError('ENCRYPTIONKEY and SALT are needed to decrypt profile secrets')
        return decrypt(token=token, encryption_key=self._encryption_key, salt=self._salt,
                       iterations=self._iterations)

    @property
    def username(self) -> str:
        return self._username

    @property
    def password(self) -> str:
        return self._password

    @property
    def ssh_key(self) -> str:
        return self._ssh_key

    @property
    def ssh_passphrase(self) -> str:
        return self._ssh_passphrase

    @property
    def credentials(self) -> Credentials:
        """return the profile as Credentials of a Target"""
        ssh_key = os.path.expanduser(self._ssh_key) if self._ssh_key else None
        return Credentials(username=self._username, password=self._password,
                           ssh_key=ssh_key, ssh_passphrase=self._ssh_passphrase)
