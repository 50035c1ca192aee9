from sqlalchemy import BigInteger, Integer, Numeric

# Use BigInteger by default, with a SQLite-safe Integer variant for autoincrement PKs.
ID_TYPE = BigInteger().with_variant(Integer, "sqlite")

# Monetary amounts: USDT-style values with up to eight fractional digits.
MONEY_TYPE = Numeric(20, 8, asdecimal=True)
