"""Adapters binding the core ports to Reddit, Resend, SQLite and Supabase."""
