from typing import NewType

UserOperationHash = NewType('UserOperationHash', str)
TransactionHash = NewType('TransactionHash', str)
Address = NewType('Address', str)
