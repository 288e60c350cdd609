"""FastAPI front end of the production planning ERP."""
