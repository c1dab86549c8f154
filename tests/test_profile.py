import os
import pytest

from nmclient.profile import Profile, encrypt, decrypt

KEY = 'correct horse battery staple'
SALT = 'nmclient-salt'


def test_encrypt_and_decrypt():
    token = encrypt('secret', KEY, SALT, iterations=1000)
    assert token != 'secret'
    assert decrypt(token, KEY, SALT, iterations=1000) == 'secret'


def test_decrypt_with_wrong_key_raises():
    token = encrypt('secret', KEY, SALT, iterations=1000)
    with pytest.raises(ValueError):
        decrypt(token, 'another key', SALT, iterations=1000)
    with pytest.raises(ValueError):
        decrypt(token, KEY, SALT, iterations=2000)


def test_profile_decrypts_password_and_passphrase():
    config = {'profiles': {'lab': {'username': 'admin',
                                   'password': encrypt('secret', KEY, SALT, iterations=1000),
                                   'ssh_key': '~/.ssh/id_lab',
                                   'ssh_key_passphrase': encrypt('phrase', KEY, SALT, iterations=1000)}}}

    profile = Profile(profile_config=config, profile_name='lab', encryption_key=KEY, salt=SALT, iterations=1000)

    assert profile.username == 'admin'
    assert profile.password == 'secret'
    assert profile.ssh_passphrase == 'phrase'
    credentials = profile.credentials
    assert credentials.ssh_key == os.path.expanduser('~/.ssh/id_lab')
    assert 'secret' not in repr(credentials)
    assert 'phrase' not in repr(credentials)


def test_user_values_override_the_profile():
    config = {'profiles': {'lab': {'username': 'admin', 'ssh_key_passphrase': 'none'}}}

    profile = Profile(profile_config=config, profile_name='lab', username='operator', password='pw')

    assert profile.username == 'operator'
    assert profile.password == 'pw'
    assert profile.ssh_passphrase is None


def test_key_material_is_read_from_environment(monkeypatch):
    monkeypatch.setenv('ENCRYPTIONKEY', KEY)
    monkeypatch.setenv('SALT', SALT)
    monkeypatch.setenv('ITERATIONS', '1000')
    config = {'profiles': {'lab': {'username': 'admin', 'password': encrypt('secret', KEY, SALT, iterations=1000)}}}

    assert Profile(profile_config=config, profile_name='lab').password == 'secret'


def test_missing_key_material_raises(monkeypatch):
    monkeypatch.delenv('ENCRYPTIONKEY', raising=False)
    monkeypatch.delenv('SALT', raising=False)
    config = {'profiles': {'lab': {'username': 'admin', 'password': 'Z0FBQUFB'}}}

    with pytest.raises(ValueError):
        Profile(profile_config=config, profile_name='lab')
