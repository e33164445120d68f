"""carapace - privilege-separation gateway over a Unix domain socket."""

__version__ = "0.1.0"
__logo__ = "🐢"
