# Overview: Persistence access per aggregate; the only place locking queries are built.
