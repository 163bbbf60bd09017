# pipeline/__init__.py
# ============================================================================
# VIBE CODING BACKEND — PIPELINE MODULE
# ============================================================================
# Vendor clients (AppyPay, Brevo, Mux) and the payment workflow built on them.
# Import submodules directly; the workflow depends on services which in turn
# depend on the Brevo client.
# ============================================================================
