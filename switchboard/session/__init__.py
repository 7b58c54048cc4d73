"""Switchboard — session core.

  - Registry: thread-safe store of live sessions keyed by identity
  - Listener: TCP accept loop, one reader task per connection
  - Dispatch: target selection and directive delivery
"""
