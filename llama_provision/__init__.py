"""GPU instance provisioning for llama.cpp inference."""
