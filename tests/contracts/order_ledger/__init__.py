"""Order ledger test data contract"""
