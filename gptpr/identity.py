"""
gpt-pr identity: version, name and banner shown by the CLI.
"""

__version__ = "0.4.0"
__codename__ = "GPT-PR"
__tagline__ = "Patch. Observe. Repeat. Ship."

BANNER = r"""
   __ _ _ __ | |_      _ __  _ __
  / _` | '_ \| __|____| '_ \| '__|
 | (_| | |_) | ||_____| |_) | |
  \__, | .__/ \__|    | .__/|_|
  |___/|_|            |_|
"""
