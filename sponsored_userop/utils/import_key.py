import glob
import logging

from eth_account import Account
from eth_account.signers.local import LocalAccount


def import_owner_account(
    keystore_file_password, keystore_file_path="keystore/*"
) -> LocalAccount:
    if keystore_file_path != "keystore/*":
        keystore = keystore_file_path
    else:
        keystore = glob.glob(keystore_file_path)[0]

    with open(keystore) as keyfile:
        encrypted_key = keyfile.read()
        private_key = Account.decrypt(encrypted_key, keystore_file_password)
        return Account.from_key(private_key)


def owner_account_from_private_key(private_key: str) -> LocalAccount:
    if private_key[:2] == "0x":
        private_key = private_key[2:]
    return Account.from_key(bytes.fromhex(private_key))


def create_random_owner_account() -> LocalAccount:
    owner = Account.create()
    logging.info(
        f"Generated owner {owner.address} with private key: "
        f"0x{bytes(owner.key).hex()}"
    )
    return owner
