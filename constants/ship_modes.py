SEA = "SEA"
AIR = "AIR"
COURIER = "COURIER"

SHIP_MODES = (SEA, AIR, COURIER)

# Short codes and synonyms accepted from order entry screens
SHIP_MODE_ALIASES = {
    "S": SEA,
    "SEA": SEA,
    "OCEAN": SEA,
    "A": AIR,
    "AIR": AIR,
    "C": COURIER,
    "COURIER": COURIER,
    "EXPRESS": COURIER,
}
