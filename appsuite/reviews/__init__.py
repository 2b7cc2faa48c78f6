"""In-memory ranking of game reviews into top-game and top-language statistics."""