"""Reference patterns used when deriving address components from flattened strings."""

import re

# Tokyo-to, Hokkaido, Kyoto-fu/Osaka-fu, or any two/three character prefecture ending in 県.
PREFECTURE_PATTERN = re.compile(r"^(東京都|北海道|(?:京都|大阪)府|.{2,3}県)")

# Shortest prefix ending in a municipality suffix, applied after the prefecture is removed.
CITY_PATTERN = re.compile(r"^(.+?[市区町村])")

# Structured address components in display order.
ADDRESS_PARTS = ("prefecture", "city", "town", "streetNumber", "building")

# Characters removed from phone numbers before indexing.
PHONE_STRIP_PATTERN = re.compile(r"[-\s]")
