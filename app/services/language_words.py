"""Common-word reference sets used for language attribution"""

ENGLISH = frozenset("""
a about above after again against all almost also although always am among an and another any anyone
anything are around as ask asked at away back bad be because been before being below best better between
big both but by call called came can cannot car case cat change child children city come could country
day days did different do does doing done down during each early end enough even ever every eye eyes
face fact family far feel few find first for found four from full game gave get give given go going good
got great group had hand hands has have having he head help her here high him himself his home house how
however i if important in into is it its itself job just keep kind know known large last later least
left less let life like line little long look made make man many mat may me mean men might money more
most mother move much must my myself name need never new next night no not nothing now number of off
often old on once one only open or other others our out over own part people place play point power
problem public put question quite rather read really right room run said same sat saw say school see
seem seemed seen set several she should show side since small so some someone something sometimes soon
start state still story student study such sure system take talk tell than that the their them then
there these they thing things think this those though thought three through time to today together told
too took toward try turn two under until up upon us use used very want was water way we week well went
were what when where whether which while who whole why will with within without woman women word work
world would write year years yes yet you young your
""".split())

SPANISH = frozenset("""
a al algo algunos ante antes aquel aqui asi aun bien cada casa como con contra cosa cual cuando de del
desde despues donde dos el ella ellas ello ellos en entre era eran es esa ese eso esta estaba estado
estan estar este esto estos fue fueron gran ha habia hace hacer hasta hay hombre hoy la las le les lo
los mas me mi mientras mismo mucho muy nada ni no nos nosotros nuestro nunca o otra otro otros para
pero poco por porque primero puede pues que quien se sea segun ser si sido siempre sin sobre solo son
su sus tambien tan tanto te tiempo tiene tienen todo todos tres tu un una uno unos usted vez vida y ya yo
""".split())

FRENCH = frozenset("""
a ai aller alors au aussi autre aux avait avant avec avoir bien bon c ca ce cela celle ces cet cette
chaque chez comme comment dans de des deux dire dit donc du elle elles en encore est et etait ete etre
eu fait faire faut fois grand il ils je jour jusqu l la le les leur leurs lui m ma mais me meme mes
moi moins mon n ne ni non nos notre nous on ont ou par parce pas peu peut plus pour pourquoi quand que
quel quelle qui rien s sa sans se ses si son sont sous suis sur ta te temps tes toi ton tous tout tres
tu un une vers voir vos votre vous y
""".split())

GERMAN = frozenset("""
ab aber alle allem allen aller alles als also alt am an andere anderen auch auf aus bei beim bin bis
bist da damit dann das dass dein deine dem den denn der des dich die dies diese diesem diesen dieser
dieses dir doch dort du durch ein eine einem einen einer eines er es etwas euch euer fur gegen gehen
gibt gross gut habe haben hat hatte haus heute hier hin hinter ich ihm ihn ihnen ihr ihre im immer in
ins ist ja jahr jetzt kann kein keine klein kommt konnen machen man mehr mein meine mich mir mit muss
nach nicht nichts noch nun nur ob oder ohne schon sehr sein seine sich sie sind so solche soll sondern
uber um und uns unser unter viel vom von vor war waren warum was weil welche wenn wer werden wie wieder
wir wird wo zu zum zur zwei zwischen
""".split())

ITALIAN = frozenset("""
a ad al alla alle anche ancora allora altro avere aveva base bene che chi ci come con cosa cui da dal
dalla degli dei del della delle dello di dopo dove due e era essere fa fare fatto gia gli ha hanno ho
il in io la le lei lo loro lui ma mai me mi mio molto ne nel nella no noi non nostro o ogni per perche
piu poi prima quale quando quello questa questo qui se sempre senza si sia solo sono stato su sua suo
sul sulla tra tu tutti tutto un una uno vi voi
""".split())

PORTUGUESE = frozenset("""
a ao aos as ate com como da das de dela dele depois do dos e ela ele eles em entre era essa esse esta
estava este eu foi for ha isso ja la lhe mais mas me mesmo meu minha muito na nao nas nem no nos nossa
nosso num numa o os ou para pela pelo por quando que quem se sem ser seu sua suas tambem te tem ter
tinha tu tudo um uma voce
""".split())

DUTCH = frozenset("""
aan al alles als altijd ben bij dan dat de der deze die dit doch doen door dus een eens en er ge geen
geweest haar had heb hebben heeft hem het hier hij hoe hun iemand iets ik in is ja je kan kon kunnen
maar me meer men met mij mijn moet na naar niet niets nog nu of om omdat ons ook op over reeds te tegen
toch toen tot u uit uw van veel voor want waren was wat we wel werd wezen wie wij wil worden zal ze
zei zelf zich zij zijn zo zonder zou
""".split())

COMMON_WORDS = {
    "en": ENGLISH,
    "es": SPANISH,
    "fr": FRENCH,
    "de": GERMAN,
    "it": ITALIAN,
    "pt": PORTUGUESE,
    "nl": DUTCH,
}
