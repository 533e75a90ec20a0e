def classify(events, store):
    """Split a fetched batch into (new, previous), keeping fetch order.

    A New event's signature goes into the store straight away, so a repeat of
    it later in the same batch already counts as Previous.
    """
    new, previous = [], []
    for event in events:
        signature = event.signature
        if store.contains(signature):
            previous.append(event)
        else:
            store.add(signature)
            new.append(event)
    return new, previous
