"""App modules for radlaudo: API models, generation services and routers."""
