# -----------------------------------------------------------------------------
# Code -> enum member lookup table
# -----------------------------------------------------------------------------
class UnsupportedCodeError(ValueError):
    pass


class Store:
    """Maps a small closed set of numeric codes to enum members."""

    def __init__(self, values, key):
        self.map = {key(value): value for value in values}

    def of(self, code):
        try:
            return self.map[code]
        except KeyError:
            raise UnsupportedCodeError(f"Object with id {code} not supported atm.") from None

    def __contains__(self, code):
        return code in self.map

    def __len__(self):
        return len(self.map)
