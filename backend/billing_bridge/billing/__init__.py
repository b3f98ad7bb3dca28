"""Razorpay billing core: signature checks, event decoding, reconciliation, gateway client."""
