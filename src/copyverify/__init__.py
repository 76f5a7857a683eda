"""copyverify — resumable content-hash verification of copied file trees."""

__version__ = "0.3.0"
