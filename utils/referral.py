import secrets
import string

# no 0/O or 1/I so codes survive being read out loud
ALPHABET = "".join(ch for ch in string.ascii_uppercase + string.digits if ch not in "0O1I")


class RefLink:
    """Random referral codes; uniqueness is left to the database constraint and the caller's retry."""

    def __init__(self, size: int = 8, prefix: str = "AF"):
        self.size = size
        self.prefix = prefix

    def _random_ref_code(self, size: int) -> str:
        return ''.join(secrets.choice(ALPHABET) for _ in range(size))

    def generate_ref_code(self) -> str:
        return self.prefix + self._random_ref_code(self.size)
