"""Email domain - composing, sending and organizing message records"""
