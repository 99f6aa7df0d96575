"""IntroSpect — live vitals monitoring client."""

__version__ = "1.0.0"
